import pytest

from engine.errors import BackendUnavailable
from engine.types import SynthesizedAudio, TranscriptionResult
from gateway.config import Settings
from gateway.server import create_app

ACCOUNT_ID = "acct123"
API_BASE = "https://api.cloudflare.com/client/v4"

WILLOW_HEADERS = {
    "User-Agent": "WillowDevice/1.0",
    "x-audio-channel": "1",
    "x-audio-sample-rate": "16000",
    "x-audio-bits": "16",
    "x-audio-codec": "pcm",
}


class StubTranscriber:
    def __init__(self, text: str = "turn on the kitchen lights", error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.calls: list[bytes] = []

    async def transcribe(self, wav: bytes) -> TranscriptionResult:
        self.calls.append(wav)
        if self.error:
            raise self.error
        return TranscriptionResult(text=self.text)


class StubSynthesizer:
    def __init__(self, audio: bytes = b"ID3fake-mp3") -> None:
        self.audio = audio
        self.texts: list[str] = []

    async def synthesize(self, text: str) -> SynthesizedAudio:
        self.texts.append(text)
        return SynthesizedAudio(audio=self.audio)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        cloudflare_account_id=ACCOUNT_ID,
        cloudflare_api_token="token",
        cloudflare_api_base=API_BASE,
        log_dir=tmp_path / "logs",
        cert_dir=tmp_path / "certs",
    )


@pytest.fixture
def transcriber() -> StubTranscriber:
    return StubTranscriber()


@pytest.fixture
def failing_transcriber() -> StubTranscriber:
    return StubTranscriber(error=BackendUnavailable("whisper timed out"))


@pytest.fixture
async def client(aiohttp_client, settings, transcriber):
    return await aiohttp_client(create_app(settings, transcriber=transcriber))
