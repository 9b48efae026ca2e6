"""FastAPI service for the therapist voice companion.

Run locally:
  uvicorn companion_ai.server:app --reload --host 127.0.0.1 --port 8001
or
  companion-server --port 8001
"""
from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field

from .chat import ChatModel, ConversationService
from .config import ServerSettings
from .errors import CompanionError, NotFoundError, ValidationError
from .model import build_chat_model
from .profiles import AdviceHandling, Scenario, TherapistProfile, TherapistRole
from .store import TherapistStore, build_store
from .stt import OpenAITranscriber

logger = logging.getLogger("companion_ai.server")
logger.setLevel(logging.INFO)

_settings: Optional[ServerSettings] = None
_store: Optional[TherapistStore] = None
_model: Optional[ChatModel] = None
_transcriber: Optional[OpenAITranscriber] = None


def get_settings() -> ServerSettings:
    global _settings
    if _settings is None:
        _settings = ServerSettings.from_env()
    return _settings


def get_store() -> TherapistStore:
    global _store
    if _store is None:
        _store = build_store(get_settings())
    return _store


def get_model() -> ChatModel:
    global _model
    if _model is None:
        _model = build_chat_model(get_settings())
    return _model


def get_conversation_service() -> ConversationService:
    return ConversationService(get_store(), get_model())


def get_transcriber() -> OpenAITranscriber:
    global _transcriber
    if _transcriber is None:
        _transcriber = OpenAITranscriber(get_settings())
    return _transcriber


app = FastAPI(title="Therapist Voice Companion")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(get_settings().cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class HistoryMessage(BaseModel):
    role: str = "assistant"
    content: str


class ChatIn(BaseModel):
    therapistId: Optional[str] = None
    message: Optional[str] = None
    conversationHistory: Optional[list[HistoryMessage]] = None


class ChatOut(BaseModel):
    response: str


class TranscribeOut(BaseModel):
    transcription: str


class TherapistIn(BaseModel):
    display_name: str = ""
    role: TherapistRole = TherapistRole.THERAPIST
    credentials: Optional[str] = None
    advice_handling: AdviceHandling = AdviceHandling.REFLECT_AND_ASK
    approaches: list[str] = Field(default_factory=list)
    words_often_used: str = ""
    words_to_avoid: str = ""
    transcripts: dict[Scenario, str] = Field(default_factory=dict)
    audio_urls: dict[Scenario, str] = Field(default_factory=dict)


class TherapistOut(BaseModel):
    id: str
    display_name: str
    role: str
    credentials: Optional[str] = None


class AudioOut(BaseModel):
    scenario: Scenario
    url: str


@app.exception_handler(RequestValidationError)
async def _bad_request(request: Request, exc: RequestValidationError):
    logger.info("[%s] rejected body: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=400, content={"detail": "Missing required fields"})


def _http_error(e: CompanionError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=str(e))


LANDING_PAGE = """<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"><title>Therapist Voice Companion</title></head>
<body>
  <h1>Therapist Voice Companion</h1>
  <p>Extend your therapeutic presence between sessions with AI-powered voice support.</p>
  <h2>For Therapists &amp; Coaches</h2>
  <p>Run <code>companion-voice setup</code> to record your six style samples and create your companion.</p>
  <h2>For Clients</h2>
  <p>Your therapist will give you the identifier of your companion.</p>
  <h3>Important Notice</h3>
  <ul>
    <li>This tool is NOT a replacement for therapy</li>
    <li>This tool is NOT for crisis support</li>
    <li>If you're in crisis, call 988 or go to your nearest emergency room</li>
  </ul>
</body>
</html>
"""


@app.get("/", response_class=HTMLResponse)
def landing():
    return LANDING_PAGE


@app.get("/health")
def health():
    return {"status": "ok", "inference_ready": get_model().ready()}


@app.get("/config")
def config():
    settings = get_settings()
    return {
        "stt_model": settings.stt_model,
        "chat_backend": settings.chat_backend,
        "chat_model": settings.chat_model,
        "store_backend": settings.store_backend,
    }


@app.post("/transcribe", response_model=TranscribeOut)
async def transcribe(audio: Optional[UploadFile] = File(None)):
    try:
        data = await audio.read() if audio is not None else b""
        logger.info("[transcribe] recv %d bytes (%s)", len(data), audio.content_type if audio else None)
        text = await get_transcriber().transcribe(data, audio.content_type if audio else None)
        return TranscribeOut(transcription=text)
    except CompanionError as e:
        if e.status_code >= 500:
            raise HTTPException(status_code=500, detail="Transcription failed")
        raise _http_error(e)
    except Exception as e:
        logger.exception("Transcription error: %s", e)
        raise HTTPException(status_code=500, detail="Transcription failed")


@app.post("/chat", response_model=ChatOut)
def chat(body: ChatIn):
    try:
        history = [m.model_dump() for m in body.conversationHistory or []]
        logger.info("[chat] recv therapist=%s message=%s", body.therapistId, body.message)
        reply = get_conversation_service().reply(body.therapistId or "", body.message or "", history)
        logger.info("[chat] reply: %s", reply)
        return ChatOut(response=reply)
    except CompanionError as e:
        if e.status_code >= 500:
            logger.error("[chat] upstream failure: %s", e)
        raise _http_error(e)
    except Exception as e:
        logger.exception("Chat error: %s", e)
        raise HTTPException(status_code=500, detail="Failed to generate response")


@app.get("/therapists/{therapist_id}", response_model=TherapistOut)
def get_therapist(therapist_id: str):
    try:
        profile = get_store().get(therapist_id)
    except CompanionError as e:
        raise _http_error(e)
    if profile is None:
        raise HTTPException(status_code=404, detail="Therapist not found")
    return TherapistOut(**profile.public_fields())


@app.post("/therapists", response_model=TherapistOut, status_code=201)
def create_therapist(body: TherapistIn):
    try:
        if not body.display_name.strip():
            raise ValidationError("Missing required fields")
        profile = TherapistProfile(
            display_name=body.display_name.strip(),
            role=body.role,
            credentials=(body.credentials or "").strip() or None,
            advice_handling=body.advice_handling,
            approaches=list(body.approaches),
            transcripts=dict(body.transcripts),
            words_often_used=body.words_often_used,
            words_to_avoid=body.words_to_avoid,
            audio_urls=dict(body.audio_urls),
        )
        stored = get_store().create(profile)
        logger.info("[therapists] created %s (%s)", stored.id, stored.display_name)
        return TherapistOut(**stored.public_fields())
    except CompanionError as e:
        raise _http_error(e)
    except Exception as e:
        logger.exception("Profile create error: %s", e)
        raise HTTPException(status_code=500, detail="internal error")


@app.post("/therapists/{therapist_id}/audio", response_model=AudioOut, status_code=201)
async def upload_audio(
    therapist_id: str,
    scenario: Optional[str] = Form(None),
    audio: Optional[UploadFile] = File(None),
):
    try:
        data = await audio.read() if audio is not None else b""
        if not data:
            raise ValidationError("No audio file provided")
        try:
            key = Scenario(scenario)
        except ValueError:
            raise ValidationError(f"Unknown scenario: {scenario}")
        store = get_store()
        if store.get(therapist_id) is None:
            raise NotFoundError("Therapist not found")
        url = await asyncio.to_thread(store.upload_audio, therapist_id, key, data, audio.content_type)
        logger.info("[therapists] %s stored %s sample (%d bytes)", therapist_id, key.value, len(data))
        return AudioOut(scenario=key, url=url)
    except CompanionError as e:
        raise _http_error(e)
    except Exception as e:
        logger.exception("Audio upload error: %s", e)
        raise HTTPException(status_code=500, detail="internal error")


def main(argv=None) -> None:
    import uvicorn

    p = argparse.ArgumentParser(description="Therapist voice companion service")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8001)
    p.add_argument("--reload", action="store_true")
    args = p.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    uvicorn.run("companion_ai.server:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
