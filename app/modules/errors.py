# in app/modules/errors.py

class AssistantError(Exception):
    """Base class for all assistant errors."""


class ConfigurationError(AssistantError):
    """Unknown language code or another contract violation by the caller."""


class CaptureUnavailable(AssistantError):
    """The platform has no microphone / camera / recognizer to offer."""


class RecognitionError(AssistantError):
    """Speech could not be recognized (noise, silence, decode failure)."""


class InferenceError(AssistantError):
    """The inference collaborator failed. The message is never shown to users."""


class MalformedResponse(AssistantError):
    """The model reply carried no usable structured payload.

    Only ever recorded by the normalizer's fallback branch; never raised to callers.
    """


class SynthesisError(AssistantError):
    """Speech synthesis failed. The text answer is still shown."""
