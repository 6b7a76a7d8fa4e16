"""
Voice capture: audio validation, speech-to-text (OpenAI Whisper) and the
recording history kept per user.
"""
import base64
import io
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

import openai
from openai import OpenAI

from .errors import InvalidInput, TranscriptionFailed
from .schema import _iso, make_id, parse_datetime, utc_now

logger = logging.getLogger(__name__)

MAX_AUDIO_BYTES = 25 * 1024 * 1024
ALLOWED_AUDIO_TYPES = {"audio/webm", "audio/mp4", "audio/wav", "audio/mp3", "audio/mpeg"}

# Rough bytes-per-second used for the duration estimate
BYTES_PER_SECOND_ESTIMATE = 16000


@dataclass
class VoiceRecording:
    recording_id: str
    owner_id: str
    transcription: str
    audio_data: str = ""  # base64; not loaded for listings
    audio_format: str = "webm"
    audio_size: int = 0
    duration: Optional[int] = None
    language: str = "en"
    confidence: Optional[float] = None
    task_id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.recording_id,
            "task_id": self.task_id,
            "transcription": self.transcription,
            "audio_format": self.audio_format,
            "audio_size": self.audio_size,
            "duration": self.duration,
            "language": self.language,
            "confidence": self.confidence,
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_row(cls, data: Dict[str, Any]) -> "VoiceRecording":
        return cls(
            recording_id=data["recording_id"],
            owner_id=data["owner_id"],
            transcription=data["transcription"],
            audio_data=data.get("audio_data") or "",
            audio_format=data.get("audio_format") or "webm",
            audio_size=data.get("audio_size") or 0,
            duration=data.get("duration"),
            language=data.get("language") or "en",
            confidence=data.get("confidence"),
            task_id=data.get("task_id"),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
        )


def validate_audio(audio: Optional[bytes], content_type: Optional[str]) -> str:
    """Check size and MIME type; returns the short format name (e.g. 'webm')."""
    if not audio:
        raise InvalidInput("No audio file provided")
    if len(audio) > MAX_AUDIO_BYTES:
        raise InvalidInput("Audio file too large")
    mime = (content_type or "").split(";")[0].strip().lower()
    if mime not in ALLOWED_AUDIO_TYPES:
        raise InvalidInput("Unsupported audio format")
    return mime.split("/")[1]


class WhisperTranscriber:
    """Speech-to-text through the OpenAI audio API."""

    def __init__(self, api_key: str, model: str = "whisper-1", timeout: float = 15.0,
                 client: Optional[OpenAI] = None):
        self.model = model
        # No automatic retries: a failed transcription is reported straight away
        self.client = client or OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    @classmethod
    def from_config(cls, cfg) -> Optional["WhisperTranscriber"]:
        if not cfg.openai_api_key:
            return None
        return cls(cfg.openai_api_key, cfg.whisper_model, cfg.transcribe_timeout_seconds)

    def transcribe(self, audio: bytes, audio_format: str, language: str = "en") -> str:
        buf = io.BytesIO(audio)
        buf.name = f"recording.{audio_format}"
        try:
            result = self.client.audio.transcriptions.create(
                model=self.model,
                file=buf,
                language=language,
            )
        except openai.OpenAIError as e:
            logger.error(f"Transcription error: {e}")
            raise TranscriptionFailed()
        text = (getattr(result, "text", "") or "").strip()
        if not text:
            raise TranscriptionFailed("Transcription returned no text")
        return text


def transcribe_upload(store, transcriber, owner_id: str, audio: Optional[bytes],
                      content_type: Optional[str], language: str = "en") -> VoiceRecording:
    """
    Validate, transcribe and record an upload.

    Raises:
        InvalidInput for a missing, oversized or unsupported file.
        TranscriptionFailed when no transcriber is configured or it fails.
    """
    audio_format = validate_audio(audio, content_type)
    if transcriber is None:
        raise TranscriptionFailed("Speech-to-text is not configured")

    text = transcriber.transcribe(audio, audio_format, language=language)

    recording = VoiceRecording(
        recording_id=make_id("rec"),
        owner_id=owner_id,
        transcription=text,
        audio_data=base64.b64encode(audio).decode("ascii"),
        audio_format=audio_format,
        audio_size=len(audio),
        duration=len(audio) // BYTES_PER_SECOND_ESTIMATE,
        language=language,
    )
    try:
        store.insert_recording(recording)
    except sqlite3.Error as e:
        # The transcript is still usable without the history entry
        logger.error(f"Error saving voice recording: {e}")
    return recording
