"""TTS adapters — text to MP3 via Google Translate or MeloTTS on Workers AI.

Both backends sit behind the same ``synthesize(text)`` call so the HTTP layer
never needs to know whether the audio arrived as a raw stream or as base64.
"""

import base64
import binascii
import logging
from typing import Protocol

import httpx

from .cloudflare import WorkersAIClient
from .errors import BackendUnavailable, EmptyInput
from .types import SynthesizedAudio

log = logging.getLogger("tts")

GOOGLE_TTS_URL = "https://translate.google.com/translate_tts"
GOOGLE_TTS_MAX_CHARS = 200  # translate_tts rejects longer queries
MELOTTS_MODEL_ID = "@cf/myshell-ai/melotts"


class SpeechSynthesizer(Protocol):
    async def synthesize(self, text: str) -> SynthesizedAudio:
        ...


def require_text(text: str | None) -> str:
    """Reject missing or whitespace-only input before any backend call."""
    if text is None or not text.strip():
        raise EmptyInput()
    return text


class GoogleTranslateSynthesizer:
    """Google Translate's public TTS endpoint. Returns its MP3 body unchanged.

    Text is cut to ``max_chars`` Python characters (code points), so astral
    characters such as emoji count once rather than as two UTF-16 units.
    """

    def __init__(self, http: httpx.AsyncClient, url: str = GOOGLE_TTS_URL,
                 lang: str = "en-US", max_chars: int = GOOGLE_TTS_MAX_CHARS):
        self._http = http
        self.url = url
        self.lang = lang
        self.max_chars = max_chars

    async def synthesize(self, text: str) -> SynthesizedAudio:
        text = require_text(text)[:self.max_chars]
        params = {"ie": "UTF-8", "tl": self.lang, "client": "tw-ob", "q": text}
        log.info("Google TTS: %d chars %r", len(text), text[:80])

        try:
            resp = await self._http.get(self.url, params=params)
        except httpx.HTTPError as e:
            raise BackendUnavailable(f"Google TTS request failed: {e}") from e

        if not resp.is_success:
            raise BackendUnavailable(f"Google TTS API returned status code {resp.status_code}")

        return SynthesizedAudio(audio=resp.content)


class MeloTTSSynthesizer:
    """MeloTTS on Workers AI. The model replies with base64 MP3 in ``audio``."""

    def __init__(self, client: WorkersAIClient, model_id: str = MELOTTS_MODEL_ID, lang: str = "en"):
        self.client = client
        self.model_id = model_id
        self.lang = lang

    async def synthesize(self, text: str) -> SynthesizedAudio:
        text = require_text(text)
        log.info("MeloTTS: %d chars %r", len(text), text[:80])
        result = await self.client.run(self.model_id, json={"prompt": text, "lang": self.lang})

        encoded = result.get("audio")
        if not isinstance(encoded, str):
            raise BackendUnavailable(f"{self.model_id} reply has no audio")
        try:
            audio = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise BackendUnavailable(f"{self.model_id} returned invalid base64 audio: {e}") from e

        log.debug("MeloTTS decoded %d bytes", len(audio))
        return SynthesizedAudio(audio=audio)
