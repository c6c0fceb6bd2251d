import pytest

from app.modules.models import SessionPhase
from app.modules.registry import SessionRegistry
from tests.doubles import FakeSpeechToText, ScriptedInference, ScriptedSynthesizer


def make_registry(idle_ttl=60.0):
    return SessionRegistry(FakeSpeechToText(), ScriptedSynthesizer(), ScriptedInference(),
                           idle_ttl=idle_ttl)


def test_unknown_language_falls_back_and_lookup_misses_raise():
    registry = make_registry()
    entry = registry.create("xx")
    assert entry.session.state.active_language == "en"
    assert registry.get(entry.session_id) is entry
    with pytest.raises(KeyError):
        registry.get("missing")


def test_idle_sessions_expire_but_busy_ones_are_kept():
    registry = make_registry(idle_ttl=60.0)
    idle = registry.create("hi")
    busy = registry.create("en")
    fresh = registry.create("ta")
    idle.last_used = busy.last_used = 0.0
    fresh.last_used = 100.0
    busy.session.state.phase = SessionPhase.PROCESSING

    assert registry.expire_idle(now=120.0) == 1

    with pytest.raises(KeyError):
        registry.get(idle.session_id)
    assert registry.get(busy.session_id) is busy
    assert registry.get(fresh.session_id) is fresh


def test_lookup_keeps_a_session_alive():
    registry = make_registry(idle_ttl=60.0)
    entry = registry.create()
    entry.last_used = 0.0
    registry.get(entry.session_id)
    assert registry.expire_idle(now=entry.last_used + 30.0) == 0
    assert len(registry) == 1


def test_zero_ttl_disables_expiry():
    registry = make_registry(idle_ttl=0)
    entry = registry.create()
    entry.last_used = 0.0
    assert registry.expire_idle(now=1e9) == 0


def test_close_all_stops_every_session():
    registry = make_registry()
    entry = registry.create()
    registry.close_all()
    assert len(registry) == 0
    assert entry.session.phase is SessionPhase.IDLE
