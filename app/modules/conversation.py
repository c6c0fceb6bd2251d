# in app/modules/conversation.py

import itertools
import logging
from typing import Iterator, List, Optional

from .models import AudioHandle, DiagnosticRecord, Message, Role

logger = logging.getLogger(__name__)


class ConversationLog:
    """
    Append-only, chronologically ordered list of messages for one conversation.
    The only change allowed after append is attaching a synthesized audio handle.
    """

    def __init__(self):
        self._messages: List[Message] = []
        self._ids = itertools.count(1)

    def append(self, role: Role, text: str, language: str,
               diagnosis: Optional[DiagnosticRecord] = None) -> Message:
        message = Message(
            id=next(self._ids),
            role=Role(role),
            text=text.strip(),
            language=language,
            diagnosis=diagnosis,
        )
        self._messages.append(message)
        logger.debug(f"Appended {message.role.value} message {message.id} [{language}]")
        return message

    def attach_audio(self, message_id: int, handle: AudioHandle) -> bool:
        """Attach `handle` unless the message already has one. Returns True when attached."""
        message = self.get(message_id)
        if message.audio_handle is not None:
            return False
        message.audio_handle = handle
        return True

    def get(self, message_id: int) -> Message:
        for message in self._messages:
            if message.id == message_id:
                return message
        raise KeyError(f"Message {message_id} not found")

    def since(self, message_id: int = 0) -> Iterator[Message]:
        """Messages with an id greater than `message_id`, oldest first."""
        return (message for message in self._messages if message.id > message_id)

    def last(self) -> Optional[Message]:
        return self._messages[-1] if self._messages else None

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))

    def __len__(self) -> int:
        return len(self._messages)
