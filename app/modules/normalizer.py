# in app/modules/normalizer.py

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple, Union

from config import config
from .errors import MalformedResponse
from .models import SEVERITY_LEVELS, URGENCY_LEVELS, DiagnosticRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiagnosisField:
    """One field of the structured diagnosis the model is asked to emit."""

    attr: str        # DiagnosticRecord attribute
    key: str         # JSON key in the model output
    kind: str        # text | number | severity | urgency | list
    example: Any     # value shown to the model in the prompt
    default: Any     # used when the value is missing or malformed
    aliases: Tuple[str, ...] = ()


# Shared by PromptComposer (rendering) and ResponseNormalizer (reading).
DIAGNOSIS_FIELDS: Tuple[DiagnosisField, ...] = (
    DiagnosisField("condition", "disease", "text",
                   "Name of the disease or condition", "Unknown Condition",
                   ("condition", "diseaseName", "disease_name")),
    DiagnosisField("confidence", "confidence", "number", 0.85, 0.7),
    DiagnosisField("severity", "severity", "severity", "|".join(SEVERITY_LEVELS), "medium"),
    DiagnosisField("description", "description", "text",
                   "Detailed description of the disease", "Disease analysis completed"),
    DiagnosisField("symptoms", "symptoms", "list",
                   ["List of visible symptoms"], ("Symptoms detected in image",)),
    DiagnosisField("causes", "causes", "list",
                   ["Possible causes of the disease"], ("Multiple factors may contribute",)),
    DiagnosisField("treatment_steps", "treatment", "list",
                   ["Immediate treatment step 1", "Treatment step 2"],
                   ("Consult local agricultural expert",),
                   ("treatmentSteps", "treatment_steps")),
    DiagnosisField("organic_treatment", "organicTreatment", "list",
                   ["Organic remedy with dose"],
                   ("Consult local agricultural expert for organic remedies",),
                   ("organic_treatment", "organic")),
    DiagnosisField("chemical_treatment", "chemicalTreatment", "list",
                   ["Chemical remedy with dose"],
                   ("Consult local agricultural expert before using chemical treatment",),
                   ("chemical_treatment", "chemical")),
    DiagnosisField("prevention_tips", "prevention", "list",
                   ["Prevention measure 1", "Prevention measure 2"],
                   ("Follow good agricultural practices",),
                   ("preventionTips", "prevention_tips")),
    DiagnosisField("expected_loss", "expectedLoss", "text",
                   "Percentage or description of expected crop loss",
                   "Variable depending on treatment",
                   ("expected_loss",)),
    DiagnosisField("urgency", "urgency", "urgency", "|".join(URGENCY_LEVELS), "within_week"),
)

FALLBACK_CONFIDENCE = 0.75
FALLBACK_SEVERITY = "medium"
FALLBACK_URGENCY = "within_week"

# Deterministic advisory content used whenever no structured payload is found.
FALLBACK_ADVICE: Dict[str, Any] = {
    "condition": "Analysis Completed",
    "symptoms": ("Visual symptoms detected in the uploaded image",),
    "causes": ("Multiple environmental and pathological factors",),
    "treatment_steps": (
        "Consult with local agricultural extension officer",
        "Apply appropriate fungicide or pesticide as recommended",
        "Improve drainage and air circulation around plants",
        "Remove affected plant parts if necessary",
    ),
    "organic_treatment": (
        "Spray neem oil (5 ml per litre of water) every 7-10 days",
        "Remove and destroy infected leaves and plant debris",
        "Apply Trichoderma-enriched compost near the root zone",
    ),
    "chemical_treatment": (
        "Spray copper oxychloride (3 g per litre of water) following the label directions",
        "Use mancozeb (2.5 g per litre of water) if spots keep spreading",
        "Wear gloves and a mask and respect the waiting period before harvest",
    ),
    "prevention_tips": (
        "Use disease-resistant crop varieties",
        "Maintain proper plant spacing",
        "Follow crop rotation practices",
        "Ensure proper irrigation management",
    ),
    "expected_loss": "10-20% if treated promptly",
}

SEVERITY_SYNONYMS = {
    "mild": "low", "minor": "low", "slight": "low", "light": "low",
    "moderate": "medium", "average": "medium", "mid": "medium",
    "severe": "high", "serious": "high", "critical": "high", "heavy": "high", "extreme": "high",
}

URGENCY_SYNONYMS = {
    "immediately": "immediate", "urgent": "immediate", "urgently": "immediate",
    "now": "immediate", "asap": "immediate", "today": "immediate", "emergency": "immediate",
    "within_a_week": "within_week", "this_week": "within_week", "within_7_days": "within_week",
    "week": "within_week", "weekly": "within_week", "soon": "within_week",
    "monitoring": "monitor", "observe": "monitor", "watch": "monitor", "none": "monitor",
}


@dataclass(frozen=True)
class Structured:
    payload: Dict[str, Any]


@dataclass(frozen=True)
class Unstructured:
    text: str
    reason: MalformedResponse


ParsedPayload = Union[Structured, Unstructured]


def _balanced_end(text: str, start: int) -> int:
    """Index just past the brace matching text[start], or -1. Braces inside strings are ignored."""
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index + 1
    return -1


def parse_payload(raw_text: Optional[str]) -> ParsedPayload:
    """Locate the first top-level JSON object embedded in free text."""
    text = raw_text if isinstance(raw_text, str) else ""
    start = text.find("{")
    if start == -1:
        return Unstructured(text, MalformedResponse("no JSON object in response"))

    last_error = "unbalanced braces"
    while start != -1:
        end = _balanced_end(text, start)
        if end == -1:
            break
        try:
            value = json.loads(text[start:end])
        except (ValueError, RecursionError) as exc:
            last_error = f"invalid JSON at offset {start}: {exc}"
        else:
            if isinstance(value, dict):
                return Structured(value)
            last_error = f"JSON at offset {start} is not an object"
        start = text.find("{", end)
    return Unstructured(text, MalformedResponse(last_error))


def _tokens(value: str) -> Sequence[str]:
    return [token for token in re.split(r"[^a-z0-9_]+", value) if token]


def _coerce_choice(value: Any, levels: Sequence[str], synonyms: Dict[str, str]) -> Optional[str]:
    if not isinstance(value, str):
        return None
    key = re.sub(r"[\s\-]+", "_", value.strip().lower())
    if key in levels:
        return key
    if key in synonyms:
        return synonyms[key]
    # "High severity" -> high; a copied template such as "low|medium|high" stays unresolved.
    matches = set()
    for token in _tokens(key.replace("_", " ")):
        if token in levels:
            matches.add(token)
        elif token in synonyms:
            matches.add(synonyms[token])
    return matches.pop() if len(matches) == 1 else None


def _coerce_confidence(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            # integers beyond float range still clamp
            return 1.0 if value > 0 else 0.0
    elif isinstance(value, str):
        cleaned = value.strip()
        try:
            number = float(cleaned.rstrip("%")) / 100 if cleaned.endswith("%") else float(cleaned)
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number):
        return None
    return min(max(number, 0.0), 1.0)


def _coerce_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _coerce_list(value: Any) -> Optional[Tuple[str, ...]]:
    if not isinstance(value, (list, tuple)):
        return None
    items = []
    for item in value:
        if isinstance(item, str) and item.strip():
            items.append(item)
        elif isinstance(item, (int, float)) and not isinstance(item, bool):
            items.append(str(item))
    return tuple(items) or None


class ResponseNormalizer:
    """
    Turns an untrusted model reply into a complete DiagnosticRecord.
    `normalize` never raises; malformed output takes the fallback branch.
    """

    def __init__(self, description_chars: Optional[int] = None):
        self.description_chars = description_chars or config.FALLBACK_DESCRIPTION_CHARS

    def normalize(self, raw_text: Optional[str]) -> DiagnosticRecord:
        parsed = parse_payload(raw_text)
        if isinstance(parsed, Structured):
            return self._from_payload(parsed.payload)
        logger.warning(f"Diagnosis response was not structured, using fallback: {parsed.reason}")
        return self._fallback(parsed.text)

    def _from_payload(self, payload: Dict[str, Any]) -> DiagnosticRecord:
        values: Dict[str, Any] = {}
        for entry in DIAGNOSIS_FIELDS:
            raw = self._lookup(payload, entry)
            if entry.kind == "number":
                value = _coerce_confidence(raw)
            elif entry.kind == "severity":
                value = _coerce_choice(raw, SEVERITY_LEVELS, SEVERITY_SYNONYMS)
            elif entry.kind == "urgency":
                value = _coerce_choice(raw, URGENCY_LEVELS, URGENCY_SYNONYMS)
            elif entry.kind == "list":
                value = _coerce_list(raw)
            else:
                value = _coerce_text(raw)
            if value is None:
                logger.debug(f"Diagnosis field '{entry.key}' missing or malformed, using default")
                value = entry.default
            values[entry.attr] = value
        return DiagnosticRecord(**values)

    @staticmethod
    def _lookup(payload: Dict[str, Any], entry: DiagnosisField) -> Any:
        for key in (entry.key,) + entry.aliases:
            if key in payload and payload[key] is not None:
                return payload[key]
        return None

    def _fallback(self, raw_text: str) -> DiagnosticRecord:
        prefix = raw_text[:self.description_chars]
        if not prefix.strip():
            description = "Disease analysis completed"
        elif len(raw_text) > self.description_chars:
            description = prefix + "..."
        else:
            description = prefix
        return DiagnosticRecord(
            confidence=FALLBACK_CONFIDENCE,
            severity=FALLBACK_SEVERITY,
            urgency=FALLBACK_URGENCY,
            description=description,
            **FALLBACK_ADVICE,
        )


_default_normalizer = ResponseNormalizer()


def normalize(raw_text: Optional[str]) -> DiagnosticRecord:
    return _default_normalizer.normalize(raw_text)
