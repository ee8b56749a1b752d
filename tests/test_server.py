import base64
import json
import struct

import httpx
import pytest
import respx
from aiohttp import web

from conftest import ACCOUNT_ID, API_BASE, WILLOW_HEADERS, StubSynthesizer, StubTranscriber
from engine.cloudflare import WorkersAIClient
from engine.errors import BackendUnavailable
from engine.stt import LocalWhisperTranscriber, WorkersAITranscriber
from gateway.server import build_transcriber, create_app

PCM = bytes(range(160)) * 2  # 320 bytes = 160 mono 16-bit samples
WHISPER_URL = f"{API_BASE}/accounts/{ACCOUNT_ID}/ai/run/@cf/openai/whisper"


# ── POST /api/willow ──────────────────────────────────────────

async def test_willow_transcribes_pcm_as_wav(client, transcriber) -> None:
    resp = await client.post("/api/willow", data=PCM, headers=WILLOW_HEADERS)

    assert resp.status == 200
    assert await resp.json() == {"language": "en", "text": "turn on the kitchen lights"}

    (wav,) = transcriber.calls
    assert len(wav) == 44 + 320
    assert struct.unpack_from("<I", wav, 28)[0] == 32000  # byte rate
    assert struct.unpack_from("<H", wav, 32)[0] == 2  # block align
    assert struct.unpack_from("<I", wav, 40)[0] == 320  # data size
    assert wav[44:] == PCM


async def test_bad_user_agent_is_rejected(client, transcriber) -> None:
    headers = {**WILLOW_HEADERS, "User-Agent": "Mozilla/5.0"}
    resp = await client.post("/api/willow", data=PCM, headers=headers)

    assert resp.status == 400
    assert "Bad user-agent received (not Willow)." in await resp.text()
    assert transcriber.calls == []


async def test_missing_stream_header_rejected_without_reading_body(client, transcriber, monkeypatch) -> None:
    async def fail_read(self):
        raise AssertionError("body must not be read")

    monkeypatch.setattr(web.Request, "read", fail_read)

    for name in ("x-audio-channel", "x-audio-sample-rate", "x-audio-bits", "x-audio-codec"):
        headers = {k: v for k, v in WILLOW_HEADERS.items() if k != name}
        resp = await client.post("/api/willow", data=PCM, headers=headers)

        assert resp.status == 400, name
        assert await resp.text() == "Error processing the file. - Bad header data received."
    assert transcriber.calls == []


async def test_non_pcm_codec_rejected(client) -> None:
    resp = await client.post("/api/willow", data=PCM, headers={**WILLOW_HEADERS, "x-audio-codec": "amrwb"})

    assert resp.status == 400
    assert "Only PCM codec accepted." in await resp.text()


async def test_backend_failure_returns_500(aiohttp_client, settings, failing_transcriber) -> None:
    client = await aiohttp_client(create_app(settings, transcriber=failing_transcriber))
    resp = await client.post("/api/willow", data=PCM, headers=WILLOW_HEADERS)

    assert resp.status == 500
    body = await resp.text()
    assert "Error processing the file." in body
    assert "whisper timed out" in body


async def test_unexpected_backend_exception_still_answers(aiohttp_client, settings) -> None:
    client = await aiohttp_client(create_app(settings, transcriber=StubTranscriber(error=RuntimeError("boom"))))
    resp = await client.post("/api/willow", data=PCM, headers=WILLOW_HEADERS)

    assert resp.status == 500
    assert await resp.text() == "Error processing the file. - boom"


async def test_strict_mode_keeps_matching_body(aiohttp_client, settings, transcriber) -> None:
    settings.strict_payload_length = True
    client = await aiohttp_client(create_app(settings, transcriber=transcriber))
    resp = await client.post("/api/willow", data=PCM, headers=WILLOW_HEADERS)

    assert resp.status == 200
    assert len(transcriber.calls) == 1


async def test_willow_through_workers_ai(aiohttp_client, settings) -> None:
    with respx.mock(assert_all_called=True) as mock:
        route = mock.post(WHISPER_URL).mock(return_value=httpx.Response(
            200, json={"success": True, "result": {"text": " hello world "}, "errors": [], "messages": []},
        ))
        client = await aiohttp_client(create_app(settings))
        resp = await client.post("/api/willow", data=PCM, headers=WILLOW_HEADERS)

        assert resp.status == 200
        assert await resp.json() == {"language": "en", "text": "hello world"}
        sent = route.calls.last.request
        assert sent.headers["authorization"] == "Bearer token"
        assert sent.content[:4] == b"RIFF"
        assert sent.content[44:] == PCM


async def test_workers_ai_error_maps_to_500(aiohttp_client, settings) -> None:
    with respx.mock as mock:
        mock.post(WHISPER_URL).mock(return_value=httpx.Response(503, text="overloaded"))
        client = await aiohttp_client(create_app(settings))
        resp = await client.post("/api/willow", data=PCM, headers=WILLOW_HEADERS)

        assert resp.status == 500
        assert "Error processing the file." in await resp.text()


# ── GET /api/tts and /api/melotts ─────────────────────────────

async def test_tts_requires_text(aiohttp_client, settings, transcriber) -> None:
    synth = StubSynthesizer()
    client = await aiohttp_client(create_app(settings, transcriber, {"tts": synth, "melotts": synth}))

    for path in ("/api/tts", "/api/tts?text=", "/api/tts?text=%20%20", "/api/melotts", "/api/melotts?text="):
        resp = await client.get(path)
        assert resp.status == 400, path
        assert await resp.text() == "Missing required parameter: text"
    assert synth.texts == []


async def test_tts_returns_mpeg(aiohttp_client, settings, transcriber) -> None:
    synth = StubSynthesizer(audio=b"ID3\x04mp3-bytes")
    client = await aiohttp_client(create_app(settings, transcriber, {"tts": synth}))

    resp = await client.get("/api/tts", params={"text": "good morning"})

    assert resp.status == 200
    assert resp.content_type == "audio/mpeg"
    assert await resp.read() == b"ID3\x04mp3-bytes"
    assert synth.texts == ["good morning"]


async def test_google_tts_sends_only_first_200_chars(aiohttp_client, settings, transcriber) -> None:
    text = "a" * 150 + "b" * 100
    with respx.mock as mock:
        route = mock.get(host="translate.google.com", path="/translate_tts").mock(
            return_value=httpx.Response(200, content=b"\xff\xfbmp3"),
        )
        client = await aiohttp_client(create_app(settings, transcriber))
        resp = await client.get("/api/tts", params={"text": text})

        assert resp.status == 200
        assert await resp.read() == b"\xff\xfbmp3"
        params = route.calls.last.request.url.params
        assert params["q"] == "a" * 150 + "b" * 50
        assert params["tl"] == "en-US"
        assert params["client"] == "tw-ob"


async def test_google_tts_failure(aiohttp_client, settings, transcriber) -> None:
    with respx.mock as mock:
        mock.get(host="translate.google.com", path="/translate_tts").mock(return_value=httpx.Response(429))
        client = await aiohttp_client(create_app(settings, transcriber))
        resp = await client.get("/api/tts", params={"text": "hello"})

        assert resp.status == 500
        assert await resp.text() == "Error generating speech: Google TTS API returned status code 429"


async def test_melotts_decodes_base64_audio(aiohttp_client, settings, transcriber) -> None:
    audio = b"\x00\x01ID3 melotts \xfe\xff"
    with respx.mock as mock:
        route = mock.post(f"{API_BASE}/accounts/{ACCOUNT_ID}/ai/run/@cf/myshell-ai/melotts").mock(
            return_value=httpx.Response(200, json={"success": True, "result": {"audio": base64.b64encode(audio).decode()}}),
        )
        client = await aiohttp_client(create_app(settings, transcriber))
        resp = await client.get("/api/melotts", params={"text": "hello there"})

        assert resp.status == 200
        assert resp.content_type == "audio/mpeg"
        assert await resp.read() == audio
        assert json.loads(route.calls.last.request.content) == {"prompt": "hello there", "lang": "en"}


async def test_melotts_backend_error(aiohttp_client, settings) -> None:
    synth = StubSynthesizer()

    async def broken(text):
        raise BackendUnavailable("quota exceeded")

    synth.synthesize = broken
    client = await aiohttp_client(create_app(settings, StubTranscriber(), {"melotts": synth}))
    resp = await client.get("/api/melotts", params={"text": "hello"})

    assert resp.status == 500
    assert await resp.text() == "Error generating speech: quota exceeded"


# ── GET / ─────────────────────────────────────────────────────

async def test_index_lists_endpoints(client) -> None:
    resp = await client.get("/")

    assert resp.status == 200
    assert resp.content_type == "text/plain"
    text = await resp.text()
    assert "POST /api/willow" in text
    assert "GET /api/tts" in text


# ── Backend wiring ────────────────────────────────────────────

def test_build_transcriber_selects_backend(settings) -> None:
    workers_ai = WorkersAIClient(ACCOUNT_ID, "token", httpx.AsyncClient())

    assert isinstance(build_transcriber(settings, workers_ai), WorkersAITranscriber)
    settings.stt_backend = "local"
    assert isinstance(build_transcriber(settings, workers_ai), LocalWhisperTranscriber)
    settings.stt_backend = "vosk"
    with pytest.raises(ValueError, match="Unknown STT backend"):
        build_transcriber(settings, workers_ai)
