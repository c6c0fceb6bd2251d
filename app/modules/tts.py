# in app/modules/tts.py

import asyncio
import datetime
import logging
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple
from uuid import uuid4

from gtts import gTTS, gTTSError

from config import config
from .errors import SynthesisError
from .models import AudioHandle

logger = logging.getLogger(__name__)

PlaybackCallback = Callable[[AudioHandle], None]


def _gtts_voice(locale: str) -> Tuple[str, str]:
    """Map 'hi-IN' style locales to gTTS (lang, tld)."""
    lang, _, region = locale.partition("-")
    tld = "co.in" if region.upper() == "IN" else "com"
    return lang.lower(), tld


class SpeechSynthesizer:
    """
    Text-to-Speech with gTTS. Each utterance is written to an MP3 file that the
    client plays; the client reports the end of playback with `finished`.
    """
    def __init__(self, output_dir: Optional[str] = None, url_prefix: Optional[str] = None):
        self.audio_output_dir = Path(output_dir or config.AUDIO_OUTPUT_DIR)
        self.url_prefix = (url_prefix or config.AUDIO_URL_PREFIX).rstrip("/")
        self._active: Dict[str, Tuple[AudioHandle, Optional[PlaybackCallback], Optional[PlaybackCallback]]] = {}
        logger.info("gTTS initialized successfully")

    def _save_blocking(self, text: str, locale: str, filepath: Path) -> None:
        lang, tld = _gtts_voice(locale)
        self.audio_output_dir.mkdir(parents=True, exist_ok=True)
        tts = gTTS(text=text, lang=lang, tld=tld, slow=False)
        tts.save(str(filepath))

    async def speak(self, text: str, locale: str,
                    on_start: Optional[PlaybackCallback] = None,
                    on_end: Optional[PlaybackCallback] = None,
                    on_error: Optional[PlaybackCallback] = None) -> AudioHandle:
        """Synthesizes `text` and returns a handle whose URL the client plays."""
        if not text:
            raise SynthesisError("Nothing to speak")

        unique_id = uuid4().hex[:8]
        timestamp = datetime.datetime.now().strftime('%Y%m%d_%H%M%S')
        filename = f"response_{timestamp}_{unique_id}.mp3"
        filepath = self.audio_output_dir / filename

        try:
            await asyncio.to_thread(self._save_blocking, text, locale, filepath)
        except (gTTSError, ValueError, OSError) as e:
            logger.error(f"Error generating TTS audio: {e}", exc_info=True)
            raise SynthesisError(f"Speech synthesis failed for {locale}") from e

        handle = AudioHandle(handle_id=unique_id, url=f"{self.url_prefix}/{filename}", path=str(filepath))
        self._active[handle.handle_id] = (handle, on_end, on_error)
        logger.info(f"Generated audio file at: {filepath}")
        if on_start:
            on_start(handle)
        return handle

    def finished(self, handle_id: str, error: bool = False) -> Optional[AudioHandle]:
        """Client-reported end of playback; fires the matching callback once."""
        entry = self._active.pop(handle_id, None)
        if entry is None:
            return None
        handle, on_end, on_error = entry
        callback = on_error if error else on_end
        self._discard_file(handle)
        if callback:
            callback(handle)
        return handle

    def cancel(self, handle: AudioHandle) -> None:
        handle.cancelled = True
        self._active.pop(handle.handle_id, None)
        self._discard_file(handle)
        logger.info(f"Playback {handle.handle_id} cancelled")

    def _discard_file(self, handle: AudioHandle) -> None:
        """An utterance is played once; its MP3 is removed when playback ends."""
        if not handle.path:
            return
        try:
            Path(handle.path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove audio file {handle.path}: {e}")

