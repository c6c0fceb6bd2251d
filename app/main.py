# in app/main.py

import asyncio
import inspect
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel
import uvicorn

from config import config

logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

from .modules.camera import ImagePreparer
from .modules.errors import ConfigurationError, InferenceError
from .modules.languages import INFERENCE_ERROR, LANGUAGE_PROFILES, resolve_profile
from .modules.llm_cloud import CloudLLMService
from .modules.normalizer import ResponseNormalizer
from .modules.prompts import DIAGNOSIS, PromptComposer
from .modules.registry import SessionEntry, SessionRegistry
from .modules.session import BUSY_PHASES
from .modules.stt import SpeechToText
from .modules.tts import SpeechSynthesizer

STATIC_DIR = Path("static")


class SessionCreate(BaseModel):
    language: Optional[str] = None
    audio_enabled: Optional[bool] = None


class SessionUpdate(BaseModel):
    language: Optional[str] = None
    audio_enabled: Optional[bool] = None


class TextPayload(BaseModel):
    text: str


class PlaybackFinished(BaseModel):
    handle_id: str
    error: bool = False


def _entry(request: Request, session_id: str) -> SessionEntry:
    try:
        return request.app.state.registry.get(session_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


async def _read_upload(upload: UploadFile, kind: str) -> bytes:
    if upload.content_type and not upload.content_type.startswith(kind + "/") \
            and upload.content_type != "application/octet-stream":
        raise HTTPException(status_code=415, detail=f"Expected an {kind} upload, got {upload.content_type}")
    data = await upload.read()
    if not data:
        raise HTTPException(status_code=400, detail=f"Empty {kind} upload")
    if len(data) > config.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail=f"Upload exceeds {config.MAX_UPLOAD_BYTES} bytes")
    return data


def _turn_result(entry: SessionEntry, accepted: bool, after: int) -> Dict[str, Any]:
    session = entry.session
    return {
        "accepted": accepted,
        "state": session.snapshot(),
        "messages": [message.to_dict() for message in session.log.since(after)],
    }


def _last_id(entry: SessionEntry) -> int:
    last = entry.session.log.last()
    return last.id if last else 0


def _reject_if_busy(entry: SessionEntry) -> None:
    if entry.session.phase in BUSY_PHASES:
        raise HTTPException(status_code=409, detail=f"Session is busy ({entry.session.phase.value})")


async def _close(service: Any) -> None:
    aclose = getattr(service, "aclose", None)
    if aclose is None:
        return
    result = aclose()
    if inspect.isawaitable(result):
        await result


def create_app(stt=None, synthesizer=None, inference=None) -> FastAPI:
    """
    Build the API. Services left as None are created on startup; tests pass
    their own doubles here.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("🚀 Krishi voice assistant is starting up...")
        config.validate()
        config.create_directories()
        app.state.stt = stt or SpeechToText()
        app.state.synthesizer = synthesizer or SpeechSynthesizer()
        app.state.inference = inference or CloudLLMService()
        app.state.registry = SessionRegistry(app.state.stt, app.state.synthesizer, app.state.inference)
        app.state.preparer = ImagePreparer()
        app.state.composer = PromptComposer()
        app.state.normalizer = ResponseNormalizer()
        logger.info("✅ Services ready")
        try:
            yield
        finally:
            app.state.registry.close_all()
            await _close(app.state.inference)
            logger.info("Shut down cleanly")

    app = FastAPI(title="Krishi Voice Assistant", version="1.0.0", lifespan=lifespan)
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=True, allow_methods=["*"], allow_headers=["*"])

    if STATIC_DIR.is_dir():
        app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

    @app.exception_handler(ConfigurationError)
    async def configuration_error(request: Request, exc: ConfigurationError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.get("/", response_class=HTMLResponse)
    async def get_root_page():
        index_path = STATIC_DIR / "index.html"
        return FileResponse(index_path) if index_path.exists() else HTMLResponse("<h1>API is running</h1><p>Frontend file not found.</p>")

    @app.get("/health")
    async def health_check(request: Request):
        state = request.app.state
        inference_status = state.inference.get_service_status() if hasattr(state.inference, "get_service_status") else {}
        return {
            "status": "healthy",
            "services": {
                "speech_recognition": getattr(state.stt, "is_available", False),
                "inference": inference_status.get("is_available", True),
                "synthesis": state.synthesizer is not None,
            },
            "sessions": len(state.registry),
        }

    @app.get("/languages")
    async def list_languages():
        return {
            "default": config.DEFAULT_LANGUAGE,
            "languages": [profile.to_dict() for profile in LANGUAGE_PROFILES.values()],
        }

    # --- Sessions ---

    @app.post("/sessions", status_code=201)
    async def create_session(request: Request, payload: Optional[SessionCreate] = None):
        payload = payload or SessionCreate()
        entry = request.app.state.registry.create(payload.language, payload.audio_enabled)
        return {"session_id": entry.session_id, "state": entry.session.snapshot()}

    @app.get("/sessions/{session_id}")
    async def get_session(request: Request, session_id: str, after: int = 0):
        entry = _entry(request, session_id)
        return _turn_result(entry, True, after)

    @app.patch("/sessions/{session_id}")
    async def update_session(request: Request, session_id: str, payload: SessionUpdate):
        session = _entry(request, session_id).session
        if payload.language is not None:
            session.set_language(payload.language)
        if payload.audio_enabled is not None:
            session.set_audio_enabled(payload.audio_enabled)
        return {"state": session.snapshot()}

    @app.delete("/sessions/{session_id}", status_code=204)
    async def delete_session(request: Request, session_id: str):
        try:
            request.app.state.registry.discard(session_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @app.post("/sessions/{session_id}/voice")
    async def post_voice(request: Request, session_id: str, audio_file: UploadFile = File(...)):
        entry = _entry(request, session_id)
        _reject_if_busy(entry)
        audio_bytes = await _read_upload(audio_file, "audio")
        suffix = Path(audio_file.filename or "clip.wav").suffix or ".wav"
        logger.info(f"Received voice clip for session {session_id}: {audio_file.filename} ({len(audio_bytes)} bytes)")

        after = _last_id(entry)
        entry.capture.feed(audio_bytes, suffix)
        accepted = await entry.session.start_recording()
        return _turn_result(entry, accepted, after)

    @app.post("/sessions/{session_id}/cancel")
    async def cancel_turn(request: Request, session_id: str):
        session = _entry(request, session_id).session
        cancelled = session.cancel()
        return {"cancelled": cancelled, "state": session.snapshot()}

    @app.post("/sessions/{session_id}/text")
    async def post_text(request: Request, session_id: str, payload: TextPayload):
        entry = _entry(request, session_id)
        if not payload.text.strip():
            raise HTTPException(status_code=400, detail="Text is empty.")
        _reject_if_busy(entry)
        after = _last_id(entry)
        accepted = await entry.session.submit_text(payload.text)
        return _turn_result(entry, accepted, after)

    @app.post("/sessions/{session_id}/photo")
    async def post_photo(request: Request, session_id: str,
                         image: UploadFile = File(...), note: Optional[str] = Form(None)):
        entry = _entry(request, session_id)
        _reject_if_busy(entry)
        raw = await _read_upload(image, "image")
        try:
            entry.camera.feed(raw)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        after = _last_id(entry)
        if note and note.strip():
            record = await entry.session.analyze_image(await entry.camera.capture_still(), note)
        else:
            record = await entry.session.capture_photo()
        result = _turn_result(entry, True, after)
        result["diagnosis"] = record.to_dict() if record else None
        return result

    # Registered before the {message_id} route so "complete" is not parsed as an id.
    @app.post("/sessions/{session_id}/playback/complete")
    async def playback_complete(request: Request, session_id: str, payload: PlaybackFinished):
        session = _entry(request, session_id).session
        playback = session.state.playback
        if playback is None or playback.handle.handle_id != payload.handle_id:
            # Only the handle this session is playing may be completed through it.
            return {"completed": False, "state": session.snapshot()}
        request.app.state.synthesizer.finished(payload.handle_id, error=payload.error)
        return {"completed": True, "state": session.snapshot()}

    @app.post("/sessions/{session_id}/playback/{message_id}")
    async def toggle_playback(request: Request, session_id: str, message_id: int):
        session = _entry(request, session_id).session
        try:
            playing = await session.toggle_playback(message_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=f"Message {message_id} not found") from exc
        return {"playing": playing, "state": session.snapshot()}

    # --- Stateless diagnosis ---

    @app.post("/diagnose")
    async def diagnose(request: Request, image: UploadFile = File(...), lang: str = Form("en")):
        state = request.app.state
        profile = resolve_profile(lang)
        raw = await _read_upload(image, "image")
        try:
            prepared = state.preparer.prepare(raw)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        prompt = state.composer.compose(DIAGNOSIS, profile.photo_caption, profile.code)
        try:
            raw_text = await asyncio.wait_for(
                state.inference.infer(prompt, prepared), timeout=config.PROCESSING_TIMEOUT
            )
        except (InferenceError, asyncio.TimeoutError) as exc:
            logger.error(f"Diagnosis inference failed: {exc!r}")
            raise HTTPException(status_code=502, detail=profile.error(INFERENCE_ERROR)) from exc
        record = state.normalizer.normalize(raw_text)
        return {"language": profile.code, "diagnosis": record.to_dict()}

    @app.get("/audio/{filename}")
    async def get_audio(filename: str):
        if Path(filename).name != filename:
            raise HTTPException(status_code=404, detail="Audio file not found")
        audio_path = Path(config.AUDIO_OUTPUT_DIR) / filename
        if not audio_path.exists():
            raise HTTPException(status_code=404, detail="Audio file not found")
        return FileResponse(audio_path, media_type="audio/mpeg")

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("app.main:app", host=config.HOST, port=config.PORT, reload=config.DEBUG)
