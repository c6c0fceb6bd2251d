import logging
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


def _clean_env(value: str) -> str:
    """Strip inline comments and whitespace from an env value."""
    if value is None:
        return ""
    return value.split('#', 1)[0].strip()


def _get_env_str(name: str, default: str) -> str:
    return _clean_env(os.getenv(name, default)) or default


def _get_env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, str(default))
    val = _clean_env(raw).lower()
    return val in {"1", "true", "yes", "y", "on"}


def _get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    cleaned = _clean_env(raw)
    try:
        return int(cleaned) if cleaned != "" else int(default)
    except ValueError:
        return int(default)


def _get_env_float(name: str, default: float) -> float:
    raw = os.getenv(name, str(default))
    cleaned = _clean_env(raw)
    try:
        return float(cleaned) if cleaned != "" else float(default)
    except ValueError:
        return float(default)


class Config:
    """Configuration class for the Krishi voice assistant"""

    # API Keys
    OPENAI_API_KEY: str = _clean_env(os.getenv("OPENAI_API_KEY", ""))

    # Inference Configuration
    OPENAI_MODEL: str = _get_env_str("OPENAI_MODEL", "gpt-4o-mini")
    OPENAI_VISION_MODEL: str = _get_env_str("OPENAI_VISION_MODEL", "gpt-4o")
    LLM_MAX_TOKENS: int = _get_env_int("LLM_MAX_TOKENS", 800)
    LLM_TEMPERATURE: float = _get_env_float("LLM_TEMPERATURE", 0.4)
    PROCESSING_TIMEOUT: float = _get_env_float("PROCESSING_TIMEOUT", 30.0)
    SESSION_IDLE_TTL: float = _get_env_float("SESSION_IDLE_TTL", 3600.0)

    # Speech Configuration
    WHISPER_MODEL: str = _get_env_str("WHISPER_MODEL", "base")
    AUDIO_OUTPUT_DIR: str = _get_env_str("AUDIO_OUTPUT_DIR", "static/audio")
    AUDIO_URL_PREFIX: str = _get_env_str("AUDIO_URL_PREFIX", "/audio")
    AUDIO_ENABLED_DEFAULT: bool = _get_env_bool("AUDIO_ENABLED_DEFAULT", True)
    DEFAULT_LANGUAGE: str = _get_env_str("DEFAULT_LANGUAGE", "en")

    # Diagnosis Configuration
    FALLBACK_DESCRIPTION_CHARS: int = _get_env_int("FALLBACK_DESCRIPTION_CHARS", 200)
    MAX_IMAGE_SIDE: int = _get_env_int("MAX_IMAGE_SIDE", 1024)
    MAX_UPLOAD_BYTES: int = _get_env_int("MAX_UPLOAD_BYTES", 10 * 1024 * 1024)

    # Server Configuration
    HOST: str = _get_env_str("HOST", "0.0.0.0")
    PORT: int = _get_env_int("PORT", 8000)
    DEBUG: bool = _get_env_bool("DEBUG", False)
    LOG_LEVEL: str = _get_env_str("LOG_LEVEL", "INFO").upper()

    @classmethod
    def validate(cls) -> bool:
        """Validate required configuration"""
        if not cls.OPENAI_API_KEY:
            logger.warning("OPENAI_API_KEY not set; inference requests will fail")
            return False
        if cls.PROCESSING_TIMEOUT <= 0:
            logger.error("PROCESSING_TIMEOUT must be positive")
            return False
        return True

    @classmethod
    def create_directories(cls):
        """Create necessary directories"""
        Path(cls.AUDIO_OUTPUT_DIR).mkdir(parents=True, exist_ok=True)

# Global config instance
config = Config()
