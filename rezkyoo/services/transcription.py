"""Speech-to-text for call recordings."""

import logging
from abc import ABC, abstractmethod

import httpx
from openai import AsyncOpenAI

from rezkyoo.config import Config

logger = logging.getLogger(__name__)

AUDIO_SUFFIXES = (".mp3", ".wav")


class Transcriber(ABC):
    """Turns a recording reference into text."""

    @abstractmethod
    async def transcribe(self, recording_url: str) -> str:
        """Fetch and transcribe a recording.

        Raises:
            Exception: If the recording cannot be fetched or transcribed
        """


class TranscriptionPipeline(Transcriber):
    """Downloads provider recordings and transcribes them with OpenAI."""

    def __init__(self, config: Config, client: AsyncOpenAI) -> None:
        """Initialize the pipeline.

        Args:
            config: Application configuration (provider credentials, model)
            client: OpenAI client
        """
        self.config = config
        self.client = client

    def _auth(self) -> tuple[str, str] | None:
        if self.config.twilio_account_sid and self.config.twilio_auth_token:
            return (self.config.twilio_account_sid, self.config.twilio_auth_token)
        return None

    async def fetch(self, recording_url: str) -> bytes:
        """Download recording audio.

        Twilio serves the recording as MP3 when the URL carries the suffix.
        """
        url = recording_url if recording_url.endswith(AUDIO_SUFFIXES) else f"{recording_url}.mp3"
        async with httpx.AsyncClient(timeout=30.0, follow_redirects=True) as http:
            response = await http.get(url, auth=self._auth())
            response.raise_for_status()
            return response.content

    async def transcribe(self, recording_url: str) -> str:
        audio = await self.fetch(recording_url)
        if not audio:
            logger.warning(f"Recording {recording_url} is empty")
            return ""

        logger.info(f"Transcribing recording ({len(audio)} bytes)")
        result = await self.client.audio.transcriptions.create(
            model=self.config.transcription_model,
            file=("recording.mp3", audio),
        )
        text = (result.text or "").strip()
        logger.debug(f"Transcript: {text[:120]}")
        return text
