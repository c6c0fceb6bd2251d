# in app/modules/session.py

import asyncio
import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from config import config
from .conversation import ConversationLog
from .errors import CaptureUnavailable, RecognitionError
from .languages import (CAPTURE_UNAVAILABLE, INFERENCE_ERROR, RECOGNITION_ERROR,
                        LanguageProfile, get_profile)
from .models import (AudioHandle, DiagnosticRecord, Message, Playback, ProcessingState,
                     RecordingState, Role, SessionPhase, SessionState)
from .nlu import IntentExtractor
from .normalizer import ResponseNormalizer
from .prompts import DIAGNOSIS, PromptComposer

logger = logging.getLogger(__name__)

BUSY_PHASES = (SessionPhase.LISTENING, SessionPhase.CAPTURING, SessionPhase.PROCESSING)


class VoiceSession:
    """
    Coordinates capture -> inference -> synthesis -> playback for one conversation.

    Phases are mutually exclusive: a new capture is refused while another capture
    or an inference is in flight, and starting playback always cancels the previous
    playback first. Every user-facing failure ends up as an assistant message in
    the conversation log; only ConfigurationError is raised to the caller.

    Collaborators are injected:
        capture:     async start_listening(locale) -> str, cancel()
        synthesizer: async speak(text, locale, on_start, on_end, on_error) -> AudioHandle, cancel(handle)
        inference:   async infer(instruction, image_bytes=None) -> str
        camera:      async capture_still() -> bytes (optional)
    """

    def __init__(self, capture, synthesizer, inference, camera=None, *,
                 language: Optional[str] = None,
                 audio_enabled: Optional[bool] = None,
                 composer: Optional[PromptComposer] = None,
                 normalizer: Optional[ResponseNormalizer] = None,
                 intents: Optional[IntentExtractor] = None,
                 log: Optional[ConversationLog] = None,
                 processing_timeout: Optional[float] = None,
                 session_id: Optional[str] = None):
        profile = get_profile(language or config.DEFAULT_LANGUAGE)
        self.session_id = session_id or uuid4().hex
        self.capture = capture
        self.synthesizer = synthesizer
        self.inference = inference
        self.camera = camera
        self.composer = composer or PromptComposer()
        self.normalizer = normalizer or ResponseNormalizer()
        self.intents = intents or IntentExtractor()
        self.log = log if log is not None else ConversationLog()
        self.processing_timeout = processing_timeout or config.PROCESSING_TIMEOUT
        self.state = SessionState(
            active_language=profile.code,
            audio_enabled=config.AUDIO_ENABLED_DEFAULT if audio_enabled is None else audio_enabled,
        )
        # Bumped whenever the current processing phase is superseded; stale results are dropped.
        self._epoch = 0
        # Bumped whenever playback is stopped or restarted; stale synthesis results are dropped.
        self._playback_epoch = 0
        self._pending_playback_id: Optional[int] = None
        self._listen_task: Optional[asyncio.Future] = None
        self._listen_token: Optional[object] = None

    # ----------------------------------------------------------------- settings

    @property
    def phase(self) -> SessionPhase:
        return self.state.phase

    @property
    def profile(self) -> LanguageProfile:
        return get_profile(self.state.active_language)

    def set_language(self, code: str) -> LanguageProfile:
        profile = get_profile(code)
        self.state.active_language = profile.code
        logger.info(f"Session {self.session_id}: language set to {profile.code}")
        return profile

    def set_audio_enabled(self, enabled: bool) -> None:
        self.state.audio_enabled = bool(enabled)
        if not enabled and self.state.phase is SessionPhase.SPEAKING:
            self.stop_playback()

    def snapshot(self) -> Dict[str, Any]:
        data = self.state.to_dict()
        data["session_id"] = self.session_id
        data["message_count"] = len(self.log)
        return data

    # -------------------------------------------------------------- voice input

    async def start_recording(self) -> bool:
        """Idle -> Listening -> Processing. Returns False when the request is refused."""
        if self.state.phase in BUSY_PHASES:
            logger.info(f"Session {self.session_id}: start_recording refused while {self.state.phase.value}")
            return False
        if self.state.phase is SessionPhase.SPEAKING:
            self.stop_playback()

        profile = self.profile
        token = object()
        self._listen_token = token
        self.state.phase = SessionPhase.LISTENING
        self.state.recording_state = RecordingState.LISTENING
        task = asyncio.ensure_future(self.capture.start_listening(profile.recognition_locale))
        self._listen_task = task
        logger.info(f"Session {self.session_id}: listening [{profile.recognition_locale}]")

        try:
            transcript = await task
        except asyncio.CancelledError:
            if self._listen_token is token:
                # The caller itself was cancelled, not the recognition.
                self._end_recording(token)
                raise
            logger.info(f"Session {self.session_id}: recognition cancelled by user")
            return True
        except CaptureUnavailable as e:
            if self._end_recording(token):
                logger.warning(f"Session {self.session_id}: capture unavailable: {e}")
                self._append_error(profile, CAPTURE_UNAVAILABLE)
            return True
        except RecognitionError as e:
            if self._end_recording(token):
                logger.warning(f"Session {self.session_id}: recognition failed: {e}")
                self._append_error(profile, RECOGNITION_ERROR)
            return True
        except Exception as e:
            if self._end_recording(token):
                logger.error(f"Session {self.session_id}: capture collaborator failed: {e}", exc_info=True)
                self._append_error(profile, RECOGNITION_ERROR)
            return True

        if self._listen_token is not token:
            logger.info(f"Session {self.session_id}: transcript arrived after cancel, discarded")
            return True
        self._listen_token = None
        self._listen_task = None
        self.state.recording_state = RecordingState.IDLE

        transcript = (transcript or "").strip()
        if not transcript:
            self.state.phase = SessionPhase.IDLE
            self._append_error(profile, RECOGNITION_ERROR)
            return True

        await self._process_utterance(transcript, profile)
        return True

    def _end_recording(self, token: object) -> bool:
        """Leave Listening for Idle if `token` is still the active recording."""
        if self._listen_token is not token:
            return False
        self._listen_token = None
        self._listen_task = None
        self.state.recording_state = RecordingState.IDLE
        self.state.phase = SessionPhase.IDLE
        return True

    async def submit_text(self, text: str) -> bool:
        """Quick reply or typed question: Idle -> Processing, no capture involved."""
        text = (text or "").strip()
        if not text or self.state.phase in BUSY_PHASES:
            return False
        if self.state.phase is SessionPhase.SPEAKING:
            self.stop_playback()
        await self._process_utterance(text, self.profile)
        return True

    def cancel(self) -> bool:
        """
        User cancel. Stops recognition synchronously, or abandons an in-flight
        capture / inference whose result will then be discarded. Appends nothing.
        """
        phase = self.state.phase
        if phase is SessionPhase.LISTENING:
            self._listen_token = None
            self.capture.cancel()
            if self._listen_task is not None and not self._listen_task.done():
                self._listen_task.cancel()
            self._listen_task = None
            self.state.recording_state = RecordingState.CANCELLED
        elif phase in (SessionPhase.CAPTURING, SessionPhase.PROCESSING):
            self._epoch += 1
            self.state.processing_state = ProcessingState.IDLE
        else:
            return False
        self.state.phase = SessionPhase.IDLE
        logger.info(f"Session {self.session_id}: {phase.value} cancelled by user")
        return True

    # ------------------------------------------------------------ image input

    async def capture_photo(self) -> Optional[DiagnosticRecord]:
        """Idle -> Capturing -> Processing using the camera collaborator."""
        if self.state.phase in BUSY_PHASES:
            return None
        if self.state.phase is SessionPhase.SPEAKING:
            self.stop_playback()

        profile = self.profile
        if self.camera is None:
            self._append_error(profile, CAPTURE_UNAVAILABLE)
            return None

        self.state.phase = SessionPhase.CAPTURING
        epoch = self._epoch
        try:
            image_bytes = await self.camera.capture_still()
        except Exception as e:
            if epoch != self._epoch:
                return None
            logger.warning(f"Session {self.session_id}: camera capture failed: {e}")
            self.state.phase = SessionPhase.IDLE
            self._append_error(profile, CAPTURE_UNAVAILABLE)
            return None
        if epoch != self._epoch:
            return None
        return await self._diagnose(image_bytes, None, profile)

    async def analyze_image(self, image_bytes: bytes, note: Optional[str] = None) -> Optional[DiagnosticRecord]:
        """Diagnose an already captured still (gallery upload)."""
        if self.state.phase in BUSY_PHASES:
            return None
        if self.state.phase is SessionPhase.SPEAKING:
            self.stop_playback()
        return await self._diagnose(image_bytes, note, self.profile)

    async def _diagnose(self, image_bytes: bytes, note: Optional[str],
                        profile: LanguageProfile) -> Optional[DiagnosticRecord]:
        caption = (note or "").strip() or profile.photo_caption
        self.log.append(Role.USER, caption, profile.code)
        prompt = self.composer.compose(DIAGNOSIS, caption, profile.code)

        raw_text = await self._infer(prompt, image_bytes, profile)
        if raw_text is None:
            return None

        try:
            record = self.normalizer.normalize(raw_text)
            summary = profile.summary_template.format(
                condition=record.condition,
                severity=profile.severity_label(record.severity),
                treatment=record.treatment_steps[0],
            )
        except Exception as e:
            # Processing must end here even when the reply cannot be summarized.
            logger.error(f"Session {self.session_id}: could not summarize diagnosis: {e}", exc_info=True)
            self._finish_processing()
            self._append_error(profile, INFERENCE_ERROR)
            return None
        message = self.log.append(Role.ASSISTANT, summary, profile.code, diagnosis=record)
        await self._respond(message)
        return record

    # -------------------------------------------------------------- processing

    async def _process_utterance(self, text: str, profile: LanguageProfile) -> Optional[Message]:
        self.log.append(Role.USER, text, profile.code)
        self.state.phase = SessionPhase.PROCESSING
        self.state.processing_state = ProcessingState.INFLIGHT
        epoch = self._epoch

        intent = (await self.intents.extract_intent(text, profile.code))["intent"]
        if epoch != self._epoch:
            return None
        prompt = self.composer.compose(intent, text, profile.code)

        reply = await self._infer(prompt, None, profile, epoch)
        if reply is None:
            return None
        message = self.log.append(Role.ASSISTANT, reply, profile.code)
        await self._respond(message)
        return message

    async def _infer(self, prompt: str, image_bytes: Optional[bytes], profile: LanguageProfile,
                     epoch: Optional[int] = None) -> Optional[str]:
        """
        Runs the inference collaborator under the processing timeout. Returns None
        when the call failed (an error message is appended) or was superseded.
        """
        if epoch is None:
            epoch = self._epoch
        self.state.phase = SessionPhase.PROCESSING
        self.state.processing_state = ProcessingState.INFLIGHT

        try:
            reply = await asyncio.wait_for(
                self.inference.infer(prompt, image_bytes), timeout=self.processing_timeout
            )
            if not reply or not reply.strip():
                raise ValueError("empty reply")
        except asyncio.TimeoutError:
            if epoch != self._epoch:
                return None
            logger.error(f"Session {self.session_id}: inference timed out after {self.processing_timeout}s")
            self._finish_processing()
            self._append_error(profile, INFERENCE_ERROR)
            return None
        except Exception as e:
            if epoch != self._epoch:
                return None
            logger.error(f"Session {self.session_id}: inference failed: {e}", exc_info=True)
            self._finish_processing()
            self._append_error(profile, INFERENCE_ERROR)
            return None

        if epoch != self._epoch:
            logger.info(f"Session {self.session_id}: discarded result of a superseded inference")
            return None
        self.state.processing_state = ProcessingState.IDLE
        return reply.strip()

    def _finish_processing(self) -> None:
        self.state.processing_state = ProcessingState.IDLE
        self.state.phase = SessionPhase.IDLE

    async def _respond(self, message: Message) -> None:
        """Processing -> Speaking when audio is enabled, else Idle."""
        self._finish_processing()
        if self.state.audio_enabled:
            await self._start_playback(message)

    def _append_error(self, profile: LanguageProfile, kind: str) -> Message:
        return self.log.append(Role.ASSISTANT, profile.error(kind), profile.code)

    # ---------------------------------------------------------------- playback

    async def toggle_playback(self, message_id: int) -> bool:
        """
        Same message while speaking -> stop. Any other message -> cancel the
        current playback, then speak it. Returns True when the message is now playing.
        """
        message = self.log.get(message_id)
        if self.state.phase in BUSY_PHASES:
            return False
        if self.state.phase is SessionPhase.SPEAKING and self._speaking_message_id() == message_id:
            self.stop_playback()
            return False
        return await self._start_playback(message)

    def _speaking_message_id(self) -> Optional[int]:
        if self.state.playback is not None:
            return self.state.playback.message_id
        return self._pending_playback_id

    def stop_playback(self) -> None:
        self._playback_epoch += 1
        self._pending_playback_id = None
        playback = self.state.playback
        if playback is not None:
            self.state.playback = None
            self.synthesizer.cancel(playback.handle)
        if self.state.phase is SessionPhase.SPEAKING:
            self.state.phase = SessionPhase.IDLE

    async def _start_playback(self, message: Message) -> bool:
        # The previous playback is always cancelled before a new one starts.
        self.stop_playback()
        ticket = self._playback_epoch
        self._pending_playback_id = message.id
        self.state.phase = SessionPhase.SPEAKING
        locale = get_profile(message.language).synthesis_locale

        try:
            handle = await self.synthesizer.speak(
                message.text, locale,
                on_end=self.playback_complete,
                on_error=self.playback_failed,
            )
        except Exception as e:
            logger.error(f"Session {self.session_id}: speech synthesis failed: {e}", exc_info=True)
            if ticket == self._playback_epoch:
                self._pending_playback_id = None
                self.state.phase = SessionPhase.IDLE
            return False

        self.log.attach_audio(message.id, handle)
        if ticket != self._playback_epoch:
            # Superseded while synthesizing; never let it become active.
            self.synthesizer.cancel(handle)
            return False
        self._pending_playback_id = None
        self.state.playback = Playback(message_id=message.id, handle=handle)
        logger.info(f"Session {self.session_id}: speaking message {message.id}")
        return True

    def playback_complete(self, handle: AudioHandle) -> None:
        """Speaking -> Idle. Ignores handles that are no longer the active one."""
        playback = self.state.playback
        if playback is None or playback.handle.handle_id != handle.handle_id:
            return
        self.state.playback = None
        if self.state.phase is SessionPhase.SPEAKING:
            self.state.phase = SessionPhase.IDLE

    def playback_failed(self, handle: AudioHandle) -> None:
        logger.warning(f"Session {self.session_id}: playback {handle.handle_id} failed on the client")
        self.playback_complete(handle)

    # ----------------------------------------------------------------- teardown

    def close(self) -> None:
        """Discard the conversation: stop everything that is still running."""
        if self.state.phase in BUSY_PHASES:
            self.cancel()
        self.stop_playback()
        logger.info(f"Session {self.session_id}: closed with {len(self.log)} messages")
