# Krishi Voice Assistant Modules
# This package contains all the core modules for the multilingual voice assistant

from .errors import (AssistantError, CaptureUnavailable, ConfigurationError, InferenceError,
                     MalformedResponse, RecognitionError, SynthesisError)
from .languages import LanguageProfile, get_profile, resolve_profile, supported_languages
from .models import DiagnosticRecord, Message, SessionPhase, SessionState
from .conversation import ConversationLog
from .normalizer import ResponseNormalizer
from .prompts import PromptComposer
from .nlu import IntentExtractor
from .stt import ClipCapture, SpeechToText
from .tts import SpeechSynthesizer
from .llm_cloud import CloudLLMService
from .camera import ImagePreparer, PhotoCapture
from .session import VoiceSession
from .registry import SessionRegistry

__all__ = [
    "AssistantError",
    "CaptureUnavailable",
    "ConfigurationError",
    "InferenceError",
    "MalformedResponse",
    "RecognitionError",
    "SynthesisError",
    "LanguageProfile",
    "get_profile",
    "resolve_profile",
    "supported_languages",
    "DiagnosticRecord",
    "Message",
    "SessionPhase",
    "SessionState",
    "ConversationLog",
    "ResponseNormalizer",
    "PromptComposer",
    "IntentExtractor",
    "SpeechToText",
    "ClipCapture",
    "SpeechSynthesizer",
    "CloudLLMService",
    "ImagePreparer",
    "PhotoCapture",
    "VoiceSession",
    "SessionRegistry",
]
