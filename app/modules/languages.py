# in app/modules/languages.py

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from config import config
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# Keys of LanguageProfile.error_templates
CAPTURE_UNAVAILABLE = "capture_unavailable"
RECOGNITION_ERROR = "recognition_error"
INFERENCE_ERROR = "inference_error"


@dataclass(frozen=True)
class LanguageProfile:
    """Everything the assistant needs to talk to a farmer in one language."""

    code: str
    display_name: str
    recognition_locale: str
    synthesis_locale: str
    prompt_template: str
    error_templates: Mapping[str, str]
    summary_template: str
    photo_caption: str
    severity_labels: Mapping[str, str]
    quick_replies: Tuple[str, ...]

    def error(self, kind: str) -> str:
        return self.error_templates.get(kind, self.error_templates[INFERENCE_ERROR])

    def answer_directive(self) -> str:
        return self.prompt_template.format(language=self.display_name)

    def severity_label(self, severity: str) -> str:
        return self.severity_labels.get(severity, severity)

    def to_dict(self) -> Dict[str, object]:
        return {
            "code": self.code,
            "display_name": self.display_name,
            "recognition_locale": self.recognition_locale,
            "synthesis_locale": self.synthesis_locale,
            "quick_replies": list(self.quick_replies),
        }


def _profile(code: str, display_name: str, recognition_locale: str, synthesis_locale: str,
             prompt_template: str, errors: Dict[str, str], summary_template: str,
             photo_caption: str, severity_labels: Dict[str, str],
             quick_replies: List[str]) -> LanguageProfile:
    return LanguageProfile(
        code=code,
        display_name=display_name,
        recognition_locale=recognition_locale,
        synthesis_locale=synthesis_locale,
        prompt_template=prompt_template,
        error_templates=MappingProxyType(dict(errors)),
        summary_template=summary_template,
        photo_caption=photo_caption,
        severity_labels=MappingProxyType(dict(severity_labels)),
        quick_replies=tuple(quick_replies),
    )


_PROFILES: Tuple[LanguageProfile, ...] = (
    _profile(
        "en", "English", "en-IN", "en-IN",
        "Respond in {language}. Keep the advice practical for small-holder farmers: "
        "name locally available inputs, give quantities and timing, and keep it short "
        "enough to be read aloud.",
        {
            CAPTURE_UNAVAILABLE: "Sorry, no microphone or camera is available on this device.",
            RECOGNITION_ERROR: "Sorry, I couldn't hear you clearly. Please tap the microphone and try again.",
            INFERENCE_ERROR: "I apologize, but I'm unable to help you right now. Please try again later.",
        },
        "Crop check: {condition} (severity: {severity}). First step: {treatment}",
        "[Photo] Please check my crop for disease.",
        {"low": "low", "medium": "medium", "high": "high"},
        [
            "What disease does my crop have?",
            "Current wheat prices",
            "Government schemes for farmers",
            "Weather forecast",
        ],
    ),
    _profile(
        "hi", "Hindi", "hi-IN", "hi-IN",
        "Respond in {language} using simple Devanagari script. Keep the advice practical "
        "for small-holder farmers: name locally available inputs, give quantities and "
        "timing, and keep it short enough to be read aloud.",
        {
            CAPTURE_UNAVAILABLE: "माफ़ करें, इस डिवाइस पर माइक्रोफ़ोन या कैमरा उपलब्ध नहीं है।",
            RECOGNITION_ERROR: "माफ़ करें, मैं आपकी आवाज़ नहीं समझ पाया। कृपया माइक बटन दबाकर फिर से बोलें।",
            INFERENCE_ERROR: "माफ़ करें, मैं अभी आपकी मदद नहीं कर पा रहा हूं। कृपया थोड़ी देर बाद कोशिश करें।",
        },
        "फसल जांच: {condition} (गंभीरता: {severity})। पहला उपाय: {treatment}",
        "[फोटो] मेरी फसल की फोटो देखकर बीमारी बताइए।",
        {"low": "कम", "medium": "मध्यम", "high": "गंभीर"},
        [
            "मेरी फसल में कौन सी बीमारी है?",
            "गेहूं का मौजूदा भाव",
            "किसानों के लिए सरकारी योजनाएं",
            "मौसम का पूर्वानुमान",
        ],
    ),
    _profile(
        "hinglish", "Hinglish", "en-IN", "en-IN",
        "Respond in {language}: Hindi words written in Roman script, mixed with common "
        "English farming terms. Keep the advice practical for small-holder farmers and "
        "short enough to be read aloud.",
        {
            CAPTURE_UNAVAILABLE: "Sorry, is device par mic ya camera available nahi hai.",
            RECOGNITION_ERROR: "Sorry, aapki awaaz clear nahi aayi. Mic button dabakar dobara boliye.",
            INFERENCE_ERROR: "Sorry, main abhi aapki help nahi kar pa raha hun. Please thodi der baad try karein.",
        },
        "Crop check: {condition} (severity: {severity}). Pehla upay: {treatment}",
        "[Photo] Meri fasal ki photo dekhkar bimari bataiye.",
        {"low": "kam", "medium": "medium", "high": "zyada"},
        [
            "Meri fasal mein kaun si bimari hai?",
            "Gehu ka current bhav",
            "Kisano ke liye sarkari yojana",
            "Mausam ka forecast",
        ],
    ),
    _profile(
        "mr", "Marathi", "mr-IN", "mr-IN",
        "Respond in {language} using Devanagari script. Keep the advice practical for "
        "small-holder farmers: name locally available inputs, give quantities and timing, "
        "and keep it short enough to be read aloud.",
        {
            CAPTURE_UNAVAILABLE: "माफ करा, या डिव्हाइसवर मायक्रोफोन किंवा कॅमेरा उपलब्ध नाही.",
            RECOGNITION_ERROR: "माफ करा, मला तुमचा आवाज समजला नाही. कृपया माइक बटण दाबून पुन्हा बोला.",
            INFERENCE_ERROR: "माफ करा, मी आत्ता तुमची मदत करू शकत नाही. कृपया थोड्या वेळाने पुन्हा प्रयत्न करा.",
        },
        "पीक तपासणी: {condition} (तीव्रता: {severity}). पहिला उपाय: {treatment}",
        "[फोटो] माझ्या पिकाचा फोटो पाहून रोग सांगा.",
        {"low": "कमी", "medium": "मध्यम", "high": "जास्त"},
        [
            "माझ्या पिकाला कोणता रोग आहे?",
            "गव्हाचा सध्याचा भाव",
            "शेतकऱ्यांसाठी सरकारी योजना",
            "हवामान अंदाज",
        ],
    ),
    _profile(
        "ta", "Tamil", "ta-IN", "ta-IN",
        "Respond in {language} using Tamil script. Keep the advice practical for "
        "small-holder farmers: name locally available inputs, give quantities and timing, "
        "and keep it short enough to be read aloud.",
        {
            CAPTURE_UNAVAILABLE: "மன்னிக்கவும், இந்த சாதனத்தில் மைக்ரோஃபோன் அல்லது கேமரா கிடைக்கவில்லை.",
            RECOGNITION_ERROR: "மன்னிக்கவும், உங்கள் குரலை புரிந்துகொள்ள முடியவில்லை. மைக் பொத்தானை அழுத்தி மீண்டும் பேசவும்.",
            INFERENCE_ERROR: "மன்னிக்கவும், இப்போது உங்களுக்கு உதவ முடியவில்லை. சிறிது நேரம் கழித்து மீண்டும் முயற்சிக்கவும்.",
        },
        "பயிர் பரிசோதனை: {condition} (தீவிரம்: {severity}). முதல் நடவடிக்கை: {treatment}",
        "[புகைப்படம்] என் பயிரின் புகைப்படத்தைப் பார்த்து நோயைச் சொல்லுங்கள்.",
        {"low": "குறைவு", "medium": "நடுத்தரம்", "high": "அதிகம்"},
        [
            "என் பயிருக்கு என்ன நோய்?",
            "கோதுமையின் தற்போதைய விலை",
            "விவசாயிகளுக்கான அரசு திட்டங்கள்",
            "வானிலை முன்னறிவிப்பு",
        ],
    ),
    _profile(
        "te", "Telugu", "te-IN", "te-IN",
        "Respond in {language} using Telugu script. Keep the advice practical for "
        "small-holder farmers: name locally available inputs, give quantities and timing, "
        "and keep it short enough to be read aloud.",
        {
            CAPTURE_UNAVAILABLE: "క్షమించండి, ఈ పరికరంలో మైక్రోఫోన్ లేదా కెమెరా అందుబాటులో లేదు.",
            RECOGNITION_ERROR: "క్షమించండి, మీ మాట అర్థం కాలేదు. మైక్ బటన్ నొక్కి మళ్ళీ మాట్లాడండి.",
            INFERENCE_ERROR: "క్షమించండి, ప్రస్తుతం మీకు సహాయం చేయలేకపోతున్నాను. కొద్దిసేపటి తర్వాత మళ్ళీ ప్రయత్నించండి.",
        },
        "పంట పరీక్ష: {condition} (తీవ్రత: {severity}). మొదటి చర్య: {treatment}",
        "[ఫోటో] నా పంట ఫోటో చూసి వ్యాధి చెప్పండి.",
        {"low": "తక్కువ", "medium": "మధ్యస్థం", "high": "ఎక్కువ"},
        [
            "నా పంటకు ఏ వ్యాధి ఉంది?",
            "గోధుమ ప్రస్తుత ధర",
            "రైతులకు ప్రభుత్వ పథకాలు",
            "వాతావరణ సూచన",
        ],
    ),
)

LANGUAGE_PROFILES: Mapping[str, LanguageProfile] = MappingProxyType(
    {profile.code: profile for profile in _PROFILES}
)


def supported_languages() -> List[str]:
    return list(LANGUAGE_PROFILES)


def get_profile(code: str) -> LanguageProfile:
    """Return the profile for `code` or raise ConfigurationError."""
    key = (code or "").strip().lower()
    profile = LANGUAGE_PROFILES.get(key)
    if profile is None:
        raise ConfigurationError(
            f"Unknown language code '{code}'. Supported: {', '.join(LANGUAGE_PROFILES)}"
        )
    return profile


def resolve_profile(code: Optional[str], default: Optional[str] = None) -> LanguageProfile:
    """Like get_profile, but falls back to the default profile for unknown codes."""
    try:
        return get_profile(code)
    except ConfigurationError:
        fallback = default or config.DEFAULT_LANGUAGE
        logger.warning(f"Unknown language '{code}', falling back to '{fallback}'")
        return get_profile(fallback)
