# in app/modules/stt.py

import asyncio
import logging
import os
import tempfile
from typing import Optional, Tuple

from config import config
from .errors import CaptureUnavailable, RecognitionError

logger = logging.getLogger(__name__)


class SpeechToText:
    """
    Speech-to-Text service using OpenAI's Whisper model.
    The model is loaded lazily on first use and shared by all sessions.
    """
    def __init__(self, model_name: Optional[str] = None):
        self.model = None
        self.model_name = model_name or config.WHISPER_MODEL
        self._load_failed = False

    @property
    def is_available(self) -> bool:
        return not self._load_failed

    def _load_model(self):
        if self.model is not None or self._load_failed:
            return self.model
        try:
            import whisper
            self.model = whisper.load_model(self.model_name)
            logger.info(f"Whisper model '{self.model_name}' loaded successfully")
        except ImportError:
            logger.error("openai-whisper is not installed; speech capture disabled")
            self._load_failed = True
        except Exception as e:
            logger.error(f"Failed to load Whisper model: {e}", exc_info=True)
            self._load_failed = True
        return self.model

    def _transcribe_blocking(self, audio_bytes: bytes, suffix: str, language: str) -> str:
        model = self._load_model()
        if model is None:
            raise CaptureUnavailable("Speech recognition model is unavailable")

        tmp_path = None
        try:
            # Whisper reads from disk through ffmpeg
            with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as tmp:
                tmp.write(audio_bytes)
                tmp_path = tmp.name
            result = model.transcribe(tmp_path, language=language, fp16=False)
            return (result.get("text") or "").strip()
        except CaptureUnavailable:
            raise
        except Exception as e:
            raise RecognitionError(f"Transcription failed: {e}") from e
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)

    async def transcribe(self, audio_bytes: bytes, locale: str, suffix: str = ".wav") -> str:
        """Transcribes one complete utterance. `locale` is e.g. 'hi-IN'."""
        language = locale.split("-", 1)[0].lower()
        text = await asyncio.to_thread(self._transcribe_blocking, audio_bytes, suffix, language)
        if not text:
            raise RecognitionError("No speech detected")
        logger.info(f"Transcription successful [{locale}]: '{text}'")
        return text


class ClipCapture:
    """
    Capture collaborator for one session: the client records a clip, uploads it
    with `feed`, and `start_listening` resolves to its transcript.
    """
    def __init__(self, stt: SpeechToText):
        self.stt = stt
        self._clips: "asyncio.Queue[Tuple[bytes, str]]" = asyncio.Queue(maxsize=1)

    def feed(self, audio_bytes: bytes, suffix: str = ".wav") -> None:
        if self._clips.full():
            self._clips.get_nowait()
        self._clips.put_nowait((audio_bytes, suffix))

    async def start_listening(self, locale: str) -> str:
        if not self.stt.is_available:
            raise CaptureUnavailable("Speech recognition is not available")
        audio_bytes, suffix = await self._clips.get()
        if not audio_bytes:
            raise RecognitionError("Empty audio clip")
        return await self.stt.transcribe(audio_bytes, locale, suffix)

    def cancel(self) -> None:
        while not self._clips.empty():
            self._clips.get_nowait()
        logger.info("Speech capture cancelled")
