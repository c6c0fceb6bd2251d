# in app/modules/prompts.py

import json
import logging
from typing import Dict

from .languages import get_profile
from .models import SEVERITY_LEVELS, URGENCY_LEVELS
from .normalizer import DIAGNOSIS_FIELDS

logger = logging.getLogger(__name__)

# Intents
ADVICE = "advice"
DISEASE = "disease"
MARKET = "market"
SCHEME = "scheme"
WEATHER = "weather"
DIAGNOSIS = "diagnosis"

ROLE_DIRECTIVE = (
    "You are an agricultural expert advising small-holder farmers in India."
)

INTENT_FOCUS: Dict[str, str] = {
    ADVICE: (
        "Give practical, actionable advice in a conversational tone. Include specific "
        "steps the farmer can take and mention any timing considerations."
    ),
    DISEASE: (
        "The farmer is asking about a crop disease or pest. Name the likely causes, "
        "list the visible signs to check, and give both organic and chemical remedies "
        "with doses. Suggest sending a photo of the affected plant for a precise diagnosis."
    ),
    MARKET: (
        "Act as an agricultural market analyst. Cover current market trends, seasonal "
        "price patterns, factors affecting prices and the best selling strategy. Say "
        "clearly that prices vary by mandi and should be checked locally."
    ),
    SCHEME: (
        "Explain the government schemes that fit the farmer's question: eligibility, "
        "benefits, documents needed and how to apply. Mention the official portal or "
        "the nearest Krishi Vigyan Kendra for confirmation."
    ),
    WEATHER: (
        "Interpret the weather question in a farming context: what operations to do or "
        "postpone and how to protect the crop. Advise checking the local IMD forecast "
        "for exact numbers."
    ),
    DIAGNOSIS: (
        "Act as an expert agricultural pathologist and crop disease specialist. "
        "Analyze the attached crop image and provide a comprehensive disease diagnosis."
    ),
}

DIAGNOSIS_GUIDELINES = (
    "Guidelines for analysis:\n"
    "1. If you can identify a specific disease, provide the exact name\n"
    "2. If the plant looks healthy, use \"Healthy Plant\" as the disease\n"
    "3. Consider common crop diseases like blight, rust, wilt, mosaic virus, etc.\n"
    "4. Provide practical, locally available treatment options\n"
    "5. Fill organicTreatment and chemicalTreatment separately, with doses\n"
    "6. Base the severity on the extent of damage visible\n"
    "7. Urgency is \"immediate\" for severe infections, \"within_week\" for moderate, "
    "\"monitor\" for mild\n"
    "8. Expected loss should be realistic (e.g. \"5-10%\", \"20-30%\", "
    "\"Minimal if treated promptly\")"
)


def diagnosis_schema() -> str:
    """The exact JSON shape the model must return for an image diagnosis."""
    example = {entry.key: entry.example for entry in DIAGNOSIS_FIELDS}
    rules = [
        "- \"confidence\" is a number between 0 and 1",
        f"- \"severity\" is one of: {', '.join(SEVERITY_LEVELS)}",
        f"- \"urgency\" is one of: {', '.join(URGENCY_LEVELS)}",
        "- every list field is a JSON array of strings",
        f"- use exactly these keys: {', '.join(entry.key for entry in DIAGNOSIS_FIELDS)}",
    ]
    return (
        "Reply with a single JSON object in the following format and nothing else:\n"
        f"{json.dumps(example, indent=2, ensure_ascii=False)}\n"
        + "\n".join(rules)
    )


class PromptComposer:
    """Builds the instruction text sent to the inference collaborator."""

    def compose(self, intent: str, utterance: str, language: str) -> str:
        profile = get_profile(language)
        focus = INTENT_FOCUS.get(intent, INTENT_FOCUS[ADVICE])

        parts = [ROLE_DIRECTIVE, focus]
        if intent == DIAGNOSIS:
            parts.append(DIAGNOSIS_GUIDELINES)
            parts.append(diagnosis_schema())
            parts.append(
                f"Write the text values in {profile.display_name}; keep the JSON keys and the "
                "severity and urgency values in English exactly as listed."
            )
        parts.append(f"The farmer says: \"{utterance}\"")
        parts.append(profile.answer_directive())

        prompt = "\n\n".join(parts)
        logger.debug(f"Composed {intent} prompt for [{profile.code}] ({len(prompt)} chars)")
        return prompt
