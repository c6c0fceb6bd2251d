"""In-memory store for live voice sessions."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional
from uuid import uuid4

from config import config
from .camera import ImagePreparer, PhotoCapture
from .languages import resolve_profile
from .session import BUSY_PHASES, VoiceSession
from .stt import ClipCapture

logger = logging.getLogger(__name__)


@dataclass
class SessionEntry:
    """A session plus the per-session capture collaborators the API feeds."""

    session: VoiceSession
    capture: ClipCapture
    camera: PhotoCapture
    last_used: float = field(default_factory=time.monotonic)

    @property
    def session_id(self) -> str:
        return self.session.session_id


class SessionRegistry:
    """Create, look up and discard sessions that share one set of services."""

    def __init__(self, stt, synthesizer, inference, preparer: Optional[ImagePreparer] = None,
                 idle_ttl: Optional[float] = None) -> None:
        self.stt = stt
        self.synthesizer = synthesizer
        self.inference = inference
        self.preparer = preparer or ImagePreparer()
        self.idle_ttl = idle_ttl if idle_ttl is not None else config.SESSION_IDLE_TTL
        self._sessions: Dict[str, SessionEntry] = {}

    def create(self, language: Optional[str] = None, audio_enabled: Optional[bool] = None) -> SessionEntry:
        """Create a session; unknown language codes fall back to the default profile."""
        self.expire_idle()
        profile = resolve_profile(language)
        capture = ClipCapture(self.stt)
        camera = PhotoCapture(self.preparer)
        session = VoiceSession(
            capture, self.synthesizer, self.inference, camera,
            language=profile.code,
            audio_enabled=audio_enabled,
            session_id=uuid4().hex,
        )
        entry = SessionEntry(session=session, capture=capture, camera=camera)
        self._sessions[entry.session_id] = entry
        logger.info(f"Created session {entry.session_id} [{profile.code}]")
        return entry

    def get(self, session_id: str) -> SessionEntry:
        """Return a session or raise KeyError if missing."""
        entry = self._sessions.get(session_id)
        if entry is None:
            raise KeyError(f"Session {session_id} not found")
        entry.last_used = time.monotonic()
        return entry

    def expire_idle(self, now: Optional[float] = None) -> int:
        """Discard sessions unused for longer than `idle_ttl`; busy sessions are kept."""
        if self.idle_ttl <= 0:
            return 0
        now = time.monotonic() if now is None else now
        expired = [
            entry.session_id for entry in self._sessions.values()
            if now - entry.last_used > self.idle_ttl and entry.session.phase not in BUSY_PHASES
        ]
        for session_id in expired:
            logger.info(f"Session {session_id} expired after {self.idle_ttl:.0f}s idle")
            self.discard(session_id)
        return len(expired)

    def discard(self, session_id: str) -> None:
        entry = self._sessions.pop(session_id, None)
        if entry is None:
            raise KeyError(f"Session {session_id} not found")
        entry.session.close()

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.discard(session_id)

    def __iter__(self) -> Iterator[SessionEntry]:
        return iter(list(self._sessions.values()))

    def __len__(self) -> int:
        return len(self._sessions)
