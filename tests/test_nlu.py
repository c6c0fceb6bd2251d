import asyncio

import pytest

from app.modules.nlu import IntentExtractor
from app.modules.prompts import ADVICE, DISEASE, MARKET, SCHEME, WEATHER


@pytest.mark.parametrize("query, lang, expected", [
    ("My tomato leaves have brown spots and some pest", "en", DISEASE),
    ("गेहूं का भाव क्या है", "hi", MARKET),
    ("PM-Kisan yojana ke baare mein batao", "hinglish", SCHEME),
    ("Will there be rain this week?", "en", WEATHER),
    ("நாளை மழை வருமா", "ta", WEATHER),
    ("How do I prepare my field for sowing?", "en", ADVICE),
    ("", "en", ADVICE),
])
def test_extract_intent(query, lang, expected):
    result = asyncio.run(IntentExtractor().extract_intent(query, lang))
    assert result["intent"] == expected
    assert 0.0 <= result["confidence"] <= 1.0


@pytest.mark.parametrize("query, expected", [
    ("How much nitrogen should I give my grain crop?", ADVICE),
    ("Do you trust this moderate brand of seed?", ADVICE),
    ("Is it raining today?", WEATHER),
    ("Which pests attack cotton?", DISEASE),
])
def test_keywords_must_start_a_word(query, expected):
    result = asyncio.run(IntentExtractor().extract_intent(query, "en"))
    assert result["intent"] == expected
