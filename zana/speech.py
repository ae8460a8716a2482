"""Speech-to-text for voice turns, via the OpenAI transcription API."""

import logging

from openai import OpenAI, OpenAIError

from .errors import ZanaError

logger = logging.getLogger(__name__)

MODEL = "whisper-1"


class TranscriptionError(ZanaError):
    pass


class Transcriber:
    def __init__(self, client: OpenAI, model: str = MODEL, timeout: float = 180.0):
        self.client = client
        self.model = model
        self.timeout = timeout

    def transcribe(self, filename: str, audio: bytes) -> str:
        if not audio:
            raise TranscriptionError("empty audio upload")
        try:
            result = self.client.audio.transcriptions.create(
                model=self.model,
                file=(filename or "audio.webm", audio),
                timeout=self.timeout,
            )
        except OpenAIError as e:
            raise TranscriptionError(f"transcription failed: {e}") from e

        text = (result.text or "").strip()
        if not text:
            raise TranscriptionError("empty transcription")
        logger.info("Transcribed %d bytes of audio into %d chars", len(audio), len(text))
        return text
