import asyncio
import json

import pytest

from app.modules.errors import (CaptureUnavailable, ConfigurationError, InferenceError,
                                RecognitionError, SynthesisError)
from app.modules.languages import (CAPTURE_UNAVAILABLE, INFERENCE_ERROR, RECOGNITION_ERROR,
                                   get_profile)
from app.modules.models import ProcessingState, RecordingState, Role, SessionPhase
from app.modules.session import VoiceSession
from tests.doubles import (ScriptedCamera, ScriptedCapture, ScriptedInference,
                           ScriptedSynthesizer, settle)


def make_session(capture=None, inference=None, synthesizer=None, camera=None, **kwargs):
    kwargs.setdefault("language", "en")
    kwargs.setdefault("audio_enabled", True)
    return VoiceSession(
        capture or ScriptedCapture(),
        synthesizer or ScriptedSynthesizer(),
        inference or ScriptedInference(),
        camera,
        **kwargs,
    )


def texts(session):
    return [(m.role, m.text) for m in session.log]


# --- voice turn ---

def test_voice_turn_appends_question_then_answer_and_speaks_it():
    synth = ScriptedSynthesizer()
    session = make_session(ScriptedCapture("When to sow wheat?"),
                           ScriptedInference("Sow in early November."), synth)

    assert asyncio.run(session.start_recording()) is True

    assert texts(session) == [(Role.USER, "When to sow wheat?"),
                              (Role.ASSISTANT, "Sow in early November.")]
    assert session.phase is SessionPhase.SPEAKING
    assert synth.spoken == [("Sow in early November.", "en-IN")]
    answer = session.log.last()
    assert session.state.playback.message_id == answer.id
    assert answer.audio_handle is session.state.playback.handle

    synth.finish(answer.audio_handle)
    assert session.phase is SessionPhase.IDLE
    assert session.state.playback is None


def test_audio_disabled_returns_to_idle_without_speaking():
    synth = ScriptedSynthesizer()
    session = make_session(ScriptedCapture("q"), ScriptedInference("a"), synth, audio_enabled=False)
    asyncio.run(session.start_recording())
    assert session.phase is SessionPhase.IDLE
    assert synth.spoken == []
    assert len(session.log) == 2


def test_hindi_inference_failure_gives_one_localized_error():
    capture = ScriptedCapture("गेहूं में पीला रतुआ")
    inference = ScriptedInference(InferenceError("boom"))
    session = make_session(capture, inference, language="hi")

    asyncio.run(session.start_recording())

    hi = get_profile("hi")
    assert capture.locales == ["hi-IN"]
    assert texts(session) == [(Role.USER, "गेहूं में पीला रतुआ"),
                              (Role.ASSISTANT, hi.error(INFERENCE_ERROR))]
    assert all(m.language == "hi" for m in session.log)
    assert session.phase is SessionPhase.IDLE
    assert session.state.processing_state is ProcessingState.IDLE
    assert "Respond in Hindi" in inference.calls[0][0]


def test_hindi_voice_turn_is_answered_in_hindi():
    question = "मेरी फसल में कौन सी बीमारी है?"
    answer = "पत्तियों पर धब्बे झुलसा रोग के लक्षण हैं। मैनकोज़ेब का छिड़काव करें।"
    capture = ScriptedCapture(question)
    inference = ScriptedInference(answer)
    synth = ScriptedSynthesizer()
    session = make_session(capture, inference, synth, language="hi")

    assert asyncio.run(session.start_recording()) is True

    assert texts(session) == [(Role.USER, question), (Role.ASSISTANT, answer)]
    assert all(m.language == "hi" for m in session.log)
    assert capture.locales == ["hi-IN"]
    assert synth.spoken == [(answer, "hi-IN")]
    prompt = inference.calls[0][0]
    assert "crop disease or pest" in prompt
    assert "Respond in Hindi" in prompt
    assert session.phase is SessionPhase.SPEAKING


def test_inference_timeout_is_reported_as_an_error():
    inference = ScriptedInference("late answer")
    session = make_session(ScriptedCapture("q"), inference, processing_timeout=0.01)

    async def scenario():
        inference.gate = asyncio.Event()
        await session.start_recording()

    asyncio.run(scenario())
    assert session.log.last().text == get_profile("en").error(INFERENCE_ERROR)
    assert session.phase is SessionPhase.IDLE


def test_empty_reply_is_an_inference_error():
    session = make_session(ScriptedCapture("q"), ScriptedInference("   "))
    asyncio.run(session.start_recording())
    assert session.log.last().text == get_profile("en").error(INFERENCE_ERROR)


@pytest.mark.parametrize("failure, kind", [
    (CaptureUnavailable("no mic"), CAPTURE_UNAVAILABLE),
    (RecognitionError("noise"), RECOGNITION_ERROR),
    (RuntimeError("driver crashed"), RECOGNITION_ERROR),
])
def test_capture_failures_become_one_error_message(failure, kind):
    inference = ScriptedInference()
    session = make_session(ScriptedCapture(failure), inference, language="ta")

    asyncio.run(session.start_recording())

    assert texts(session) == [(Role.ASSISTANT, get_profile("ta").error(kind))]
    assert session.phase is SessionPhase.IDLE
    assert session.state.recording_state is RecordingState.IDLE
    assert inference.calls == []


def test_blank_transcript_is_a_recognition_error():
    session = make_session(ScriptedCapture("   "))
    asyncio.run(session.start_recording())
    assert texts(session) == [(Role.ASSISTANT, get_profile("en").error(RECOGNITION_ERROR))]


# --- exclusivity and cancel ---

def test_start_recording_is_refused_while_listening_and_cancel_stops_it():
    capture = ScriptedCapture(hold=True)
    session = make_session(capture)

    async def scenario():
        first = asyncio.ensure_future(session.start_recording())
        await settle()
        assert session.phase is SessionPhase.LISTENING
        assert await session.start_recording() is False

        assert session.cancel() is True
        assert session.phase is SessionPhase.IDLE
        assert session.state.recording_state is RecordingState.CANCELLED
        assert await first is True

    asyncio.run(scenario())
    assert capture.cancelled == 1
    assert len(capture.locales) == 1
    assert len(session.log) == 0


def test_cancel_during_processing_discards_the_late_result():
    inference = ScriptedInference("too late")
    synth = ScriptedSynthesizer()
    session = make_session(ScriptedCapture("question"), inference, synth)

    async def scenario():
        inference.gate = asyncio.Event()
        turn = asyncio.ensure_future(session.start_recording())
        await settle()
        assert session.phase is SessionPhase.PROCESSING
        assert await session.start_recording() is False
        assert await session.submit_text("another") is False

        assert session.cancel() is True
        assert session.phase is SessionPhase.IDLE
        inference.gate.set()
        await turn

    asyncio.run(scenario())
    assert texts(session) == [(Role.USER, "question")]
    assert synth.spoken == []
    assert session.phase is SessionPhase.IDLE


def test_new_turn_after_cancel_is_not_disturbed_by_the_old_one():
    inference = ScriptedInference("stale", "fresh")
    session = make_session(ScriptedCapture("first", "second"), inference, audio_enabled=False)

    async def scenario():
        inference.gate = asyncio.Event()
        old = asyncio.ensure_future(session.start_recording())
        await settle()
        session.cancel()
        inference.gate.set()
        await old
        inference.gate = None
        await session.start_recording()

    asyncio.run(scenario())
    assert [m.text for m in session.log] == ["first", "second", "fresh"]


def test_cancel_when_idle_does_nothing():
    session = make_session()
    assert session.cancel() is False
    assert len(session.log) == 0


# --- playback ---

def _session_with_two_answers(synth):
    session = make_session(ScriptedCapture("q1", "q2"), ScriptedInference("a1", "a2"),
                           synth, audio_enabled=False)

    async def fill():
        await session.start_recording()
        await session.start_recording()

    asyncio.run(fill())
    return session, [m for m in session.log if m.role is Role.ASSISTANT]


def test_toggle_switches_between_messages_with_one_active_handle():
    synth = ScriptedSynthesizer()
    session, (first, second) = _session_with_two_answers(synth)

    async def scenario():
        assert await session.toggle_playback(first.id) is True
        first_handle = session.state.playback.handle
        assert await session.toggle_playback(second.id) is True
        assert first_handle.cancelled
        assert session.state.playback.message_id == second.id
        assert await session.toggle_playback(second.id) is False

    asyncio.run(scenario())
    assert synth.max_active == 1
    assert synth.active == {}
    assert session.phase is SessionPhase.IDLE
    assert session.state.playback is None


def test_stale_completion_is_ignored():
    synth = ScriptedSynthesizer()
    session, (first, second) = _session_with_two_answers(synth)

    async def scenario():
        await session.toggle_playback(first.id)
        stale = session.state.playback.handle
        await session.toggle_playback(second.id)
        session.playback_complete(stale)

    asyncio.run(scenario())
    assert session.phase is SessionPhase.SPEAKING
    assert session.state.playback.message_id == second.id


def test_stop_while_synthesizing_cancels_the_new_handle():
    synth = ScriptedSynthesizer()
    session, (first, _) = _session_with_two_answers(synth)

    async def scenario():
        synth.gate = asyncio.Event()
        pending = asyncio.ensure_future(session.toggle_playback(first.id))
        await settle()
        assert session.phase is SessionPhase.SPEAKING
        assert await session.toggle_playback(first.id) is False
        synth.gate.set()
        assert await pending is False

    asyncio.run(scenario())
    assert session.phase is SessionPhase.IDLE
    assert synth.active == {}
    assert synth.cancelled and synth.cancelled[-1].cancelled


def test_synthesis_failure_keeps_the_text_answer():
    synth = ScriptedSynthesizer()
    synth.fail_with = SynthesisError("offline")
    session = make_session(ScriptedCapture("q"), ScriptedInference("answer"), synth)
    asyncio.run(session.start_recording())
    assert session.log.last().text == "answer"
    assert session.phase is SessionPhase.IDLE


def test_recording_while_speaking_stops_playback_first():
    synth = ScriptedSynthesizer()
    session = make_session(ScriptedCapture("q1", "q2"), ScriptedInference("a1", "a2"), synth)

    async def scenario():
        await session.start_recording()
        speaking = session.state.playback.handle
        assert await session.start_recording() is True
        assert speaking.cancelled

    asyncio.run(scenario())
    assert synth.max_active == 1
    assert session.state.playback.message_id == session.log.last().id


def test_disabling_audio_stops_playback():
    synth = ScriptedSynthesizer()
    session = make_session(ScriptedCapture("q"), ScriptedInference("a"), synth)
    asyncio.run(session.start_recording())
    assert session.phase is SessionPhase.SPEAKING

    session.set_audio_enabled(False)
    assert session.phase is SessionPhase.IDLE
    assert synth.active == {}


def test_toggle_is_refused_while_processing():
    inference = ScriptedInference("a")
    session = make_session(ScriptedCapture("q"), inference)

    async def scenario():
        inference.gate = asyncio.Event()
        turn = asyncio.ensure_future(session.start_recording())
        await settle()
        question = session.log.last()
        assert await session.toggle_playback(question.id) is False
        inference.gate.set()
        await turn

    asyncio.run(scenario())


# --- language and quick replies ---

def test_language_switch_applies_to_the_next_turn():
    capture = ScriptedCapture("q1", "q2")
    synth = ScriptedSynthesizer()
    session = make_session(capture, ScriptedInference("a1", "a2"), synth)

    async def scenario():
        await session.start_recording()
        session.set_language("te")
        await session.start_recording()

    asyncio.run(scenario())
    assert capture.locales == ["en-IN", "te-IN"]
    assert synth.spoken[-1][1] == "te-IN"
    assert [m.language for m in session.log] == ["en", "en", "te", "te"]


def test_unknown_language_leaves_state_untouched():
    session = make_session(language="mr")
    with pytest.raises(ConfigurationError):
        session.set_language("de")
    assert session.state.active_language == "mr"


def test_unknown_initial_language_is_rejected():
    with pytest.raises(ConfigurationError):
        make_session(language="xx")


def test_quick_reply_follows_the_utterance_path():
    inference = ScriptedInference("Wheat is around 2400 per quintal.")
    capture = ScriptedCapture()
    session = make_session(capture, inference, audio_enabled=False)
    quick = get_profile("en").quick_replies[1]

    assert asyncio.run(session.submit_text(quick)) is True
    assert capture.locales == []
    assert [m.text for m in session.log] == [quick, "Wheat is around 2400 per quintal."]
    assert "market" in inference.calls[0][0].lower()


# --- camera ---

def test_photo_with_prose_reply_yields_fallback_diagnosis():
    inference = ScriptedInference("The leaves show rust coloured pustules. Spray a fungicide soon.")
    synth = ScriptedSynthesizer()
    session = make_session(inference=inference, synthesizer=synth,
                           camera=ScriptedCamera(b"jpeg-bytes"))

    record = asyncio.run(session.capture_photo())

    assert record.confidence == pytest.approx(0.75)
    assert record.severity == "medium"
    prompt, image = inference.calls[0]
    assert image == b"jpeg-bytes"
    assert "JSON" in prompt
    question, answer = list(session.log)
    assert question.text == get_profile("en").photo_caption
    assert answer.diagnosis is record
    assert answer.text == get_profile("en").summary_template.format(
        condition=record.condition, severity="medium", treatment=record.treatment_steps[0])
    assert synth.spoken[0][0] == answer.text


def test_photo_with_json_reply_is_summarized_in_the_active_language():
    reply = json.dumps({"disease": "Leaf Blight", "severity": "severe",
                        "treatment": ["Spray mancozeb"], "urgency": "urgent"})
    session = make_session(inference=ScriptedInference(reply), language="hi",
                           audio_enabled=False, camera=ScriptedCamera(b"img"))

    record = asyncio.run(session.capture_photo())

    assert record.condition == "Leaf Blight"
    assert record.severity == "high"
    assert record.urgency == "immediate"
    summary = session.log.last().text
    assert "Leaf Blight" in summary and "गंभीर" in summary and "Spray mancozeb" in summary


def test_photo_without_camera_reports_capture_unavailable():
    session = make_session(language="mr")
    assert asyncio.run(session.capture_photo()) is None
    assert texts(session) == [(Role.ASSISTANT, get_profile("mr").error(CAPTURE_UNAVAILABLE))]
    assert session.phase is SessionPhase.IDLE


def test_camera_failure_reports_capture_unavailable():
    session = make_session(camera=ScriptedCamera(CaptureUnavailable("no frame")))
    assert asyncio.run(session.capture_photo()) is None
    assert session.log.last().text == get_profile("en").error(CAPTURE_UNAVAILABLE)


def test_photo_inference_failure_gives_one_error():
    session = make_session(inference=ScriptedInference(InferenceError("down")),
                           camera=ScriptedCamera(b"img"))
    assert asyncio.run(session.capture_photo()) is None
    assert [m.role for m in session.log] == [Role.USER, Role.ASSISTANT]
    assert session.log.last().diagnosis is None


def test_analyze_image_uses_the_farmer_note_as_caption():
    session = make_session(inference=ScriptedInference("prose"), audio_enabled=False)
    asyncio.run(session.analyze_image(b"img", note="Spots on my chilli leaves"))
    assert session.log.get(1).text == "Spots on my chilli leaves"


def test_close_stops_everything():
    synth = ScriptedSynthesizer()
    session = make_session(ScriptedCapture("q"), ScriptedInference("a"), synth)
    asyncio.run(session.start_recording())
    session.close()
    assert session.phase is SessionPhase.IDLE
    assert synth.active == {}


class ExplodingNormalizer:
    def normalize(self, raw):
        raise RuntimeError("normalizer bug")


def test_failure_after_inference_still_leaves_processing():
    session = make_session(inference=ScriptedInference("{}", "Sow in November."),
                           camera=ScriptedCamera(b"img"), audio_enabled=False,
                           normalizer=ExplodingNormalizer())

    assert asyncio.run(session.capture_photo()) is None

    assert session.phase is SessionPhase.IDLE
    assert session.state.processing_state is ProcessingState.IDLE
    assert texts(session) == [(Role.USER, get_profile("en").photo_caption),
                              (Role.ASSISTANT, get_profile("en").error(INFERENCE_ERROR))]
    assert asyncio.run(session.submit_text("When to sow wheat?")) is True
    assert session.log.last().text == "Sow in November."


def test_oversized_confidence_in_photo_reply_is_clamped():
    reply = '{"disease": "Leaf Rust", "confidence": 1' + "0" * 400 + "}"
    session = make_session(inference=ScriptedInference(reply),
                           camera=ScriptedCamera(b"img"), audio_enabled=False)

    record = asyncio.run(session.capture_photo())

    assert record.condition == "Leaf Rust"
    assert record.confidence == 1.0
    assert session.phase is SessionPhase.IDLE
    assert session.log.last().diagnosis is record
