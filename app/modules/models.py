"""Domain models shared by the conversation, diagnosis and session modules."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

SEVERITY_LEVELS: Tuple[str, ...] = ("low", "medium", "high")
URGENCY_LEVELS: Tuple[str, ...] = ("immediate", "within_week", "monitor")


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class SessionPhase(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    CAPTURING = "capturing"
    PROCESSING = "processing"
    SPEAKING = "speaking"


class RecordingState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    CANCELLED = "cancelled"


class ProcessingState(str, Enum):
    IDLE = "idle"
    INFLIGHT = "inflight"


@dataclass(frozen=True)
class DiagnosticRecord:
    """Normalized crop-disease diagnosis. Every field is always populated."""

    condition: str
    confidence: float
    severity: str
    description: str
    symptoms: Tuple[str, ...]
    causes: Tuple[str, ...]
    treatment_steps: Tuple[str, ...]
    organic_treatment: Tuple[str, ...]
    chemical_treatment: Tuple[str, ...]
    prevention_tips: Tuple[str, ...]
    expected_loss: str
    urgency: str

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, tuple):
                data[key] = list(value)
        return data


@dataclass
class AudioHandle:
    """A synthesized utterance. `url` is what the client plays."""

    handle_id: str
    url: Optional[str] = None
    path: Optional[str] = None
    cancelled: bool = False


@dataclass
class Message:
    """One turn in the conversation log."""

    id: int
    role: Role
    text: str
    language: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    audio_handle: Optional[AudioHandle] = None
    diagnosis: Optional[DiagnosticRecord] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "text": self.text,
            "language": self.language,
            "created_at": self.created_at.isoformat(),
            "audio_url": self.audio_handle.url if self.audio_handle else None,
            "diagnosis": self.diagnosis.to_dict() if self.diagnosis else None,
        }


@dataclass(frozen=True)
class Playback:
    message_id: int
    handle: AudioHandle


@dataclass
class SessionState:
    """Session-scoped mutable state, owned by exactly one VoiceSession."""

    active_language: str
    audio_enabled: bool
    phase: SessionPhase = SessionPhase.IDLE
    recording_state: RecordingState = RecordingState.IDLE
    processing_state: ProcessingState = ProcessingState.IDLE
    playback: Optional[Playback] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active_language": self.active_language,
            "audio_enabled": self.audio_enabled,
            "phase": self.phase.value,
            "recording_state": self.recording_state.value,
            "processing_state": self.processing_state.value,
            "playback": (
                {
                    "message_id": self.playback.message_id,
                    "handle_id": self.playback.handle.handle_id,
                    "audio_url": self.playback.handle.url,
                }
                if self.playback else None
            ),
        }
