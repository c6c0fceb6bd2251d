# in app/modules/nlu.py

import logging
import re
from typing import Dict, Any, Set

from .prompts import ADVICE, DISEASE, MARKET, SCHEME, WEATHER

logger = logging.getLogger(__name__)

class IntentExtractor:
    """
    A keyword-based intent extractor for farmer questions in English, Hindi,
    Hinglish, Marathi, Tamil and Telugu. Picks which focus the prompt gets.
    """

    def __init__(self):
        # All languages are combined per intent, since Hinglish queries
        # mix and match words freely.
        self.intent_keywords = {
            DISEASE: [
                "disease", "pest", "insect", "fungus", "blight", "rust", "wilt", "spots",
                "keet", "keeda", "rog", "bimari", "beemari",
                "बीमारी", "रोग", "कीट", "कीड़ा",
                "நோய்", "பூச்சி", "వ్యాధి", "పురుగు", "तेल्या", "किड",
            ],
            MARKET: [
                "price", "prices", "rate", "market", "mandi", "sell", "selling",
                "bhav", "daam", "keemat",
                "भाव", "दाम", "कीमत", "मंडी", "बाजार",
                "விலை", "சந்தை", "ధర", "మార్కెట్", "बाजारभाव",
            ],
            SCHEME: [
                "scheme", "schemes", "subsidy", "government", "loan", "insurance", "pm-kisan",
                "yojana", "sarkari",
                "योजना", "सरकारी", "सब्सिडी", "अनुदान",
                "திட்ட", "மானியம்", "పథక", "సబ్సిడీ",
            ],
            WEATHER: [
                "weather", "forecast", "rain", "temperature", "humidity",
                "mausam", "baarish", "barish",
                "मौसम", "बारिश", "हवामान", "पाऊस",
                "வானிலை", "மழை", "వాతావరణ", "వర్షం",
            ],
        }

    async def extract_intent(self, query: str, lang: str = "en") -> Dict[str, Any]:
        """
        Finds the intent whose keywords appear most often in the query.
        Falls back to general advice when nothing matches.
        """
        query_lower = (query or "").lower()
        tokens = set(re.findall(r"[a-z0-9\-]+", query_lower))

        detected_intent = ADVICE
        best_score = 0
        for intent, keywords in self.intent_keywords.items():
            score = sum(1 for keyword in keywords if self._matches(keyword, query_lower, tokens))
            if score > best_score:
                best_score = score
                detected_intent = intent

        result = {
            "intent": detected_intent,
            "confidence": 0.9 if best_score > 0 else 0.3
        }

        logger.info(f"NLU result for [{lang}] query '{query}': {result}")
        return result

    @staticmethod
    def _matches(keyword: str, query_lower: str, tokens: Set[str]) -> bool:
        """
        Roman-script keywords must start a word ("rain" matches "raining" but not
        "grain"); Indic-script stems are matched anywhere since they take suffixes
        without a word break.
        """
        if keyword.isascii():
            return any(token.startswith(keyword) for token in tokens)
        return keyword in query_lower
