"""Gateway server — Willow STT and TTS endpoints over HTTP."""

import logging
from dataclasses import dataclass, field

import httpx
from aiohttp import web

from engine.cloudflare import WorkersAIClient
from engine.errors import GatewayError
from engine.stt import LocalWhisperTranscriber, Transcriber, WorkersAITranscriber
from engine.tts import GoogleTranslateSynthesizer, MeloTTSSynthesizer, SpeechSynthesizer, require_text
from engine.wav import assemble, synthesize_header
from gateway.cert import server_ssl_context
from gateway.config import Settings
from gateway.validation import check_payload_length, validate_stream_headers, with_payload_length

log = logging.getLogger("gateway")


@dataclass
class Backends:
    """Speech adapters used by the handlers, filled in at startup."""
    transcriber: Transcriber | None = None
    synthesizers: dict[str, SpeechSynthesizer] = field(default_factory=dict)


SETTINGS = web.AppKey("settings", Settings)
BACKENDS = web.AppKey("backends", Backends)

STT_ERROR_PREFIX = "Error processing the file."
TTS_ERROR_PREFIX = "Error generating speech:"

INDEX_TEXT = (
    "Willow Speech Services - Available endpoints: "
    "POST /api/willow (STT), GET /api/tts?text=hello (TTS), GET /api/melotts?text=hello (TTS)"
)


# ── HTTP routes ───────────────────────────────────────────────

async def handle_index(request: web.Request) -> web.Response:
    """Plain-text capability summary."""
    return web.Response(text=INDEX_TEXT)


async def handle_willow(request: web.Request) -> web.Response:
    """Wrap Willow's raw PCM in a WAV header and transcribe it."""
    settings = request.app[SETTINGS]
    try:
        # Headers are checked before the body so rejected audio is never buffered
        descriptor = validate_stream_headers(request.headers, settings.device_token)
        body = await request.read()
        if "content-length" not in request.headers:
            descriptor = with_payload_length(descriptor, len(body))
        elif settings.strict_payload_length:
            check_payload_length(descriptor, len(body))

        header = synthesize_header(descriptor)
        log.info(
            "Willow audio: %d bytes, %dch %dHz %d-bit (byte rate %d, block align %d)",
            len(body), descriptor.channels, descriptor.sample_rate,
            descriptor.bits_per_sample, descriptor.byte_rate, descriptor.block_align,
        )
        result = await request.app[BACKENDS].transcriber.transcribe(assemble(header, body))
    except GatewayError as e:
        log.warning("STT request failed (%d): %s", e.status, e.message)
        return web.Response(text=f"{STT_ERROR_PREFIX} - {e.message}", status=e.status)
    except web.HTTPException:
        raise
    except Exception as e:
        log.exception("Unexpected STT error")
        return web.Response(text=f"{STT_ERROR_PREFIX} - {e}", status=500)

    return web.json_response(result.to_dict())


def make_tts_handler(name: str):
    """Build a GET handler that speaks ``?text=`` with the named synthesizer."""

    async def handle_tts(request: web.Request) -> web.Response:
        synthesizer: SpeechSynthesizer = request.app[BACKENDS].synthesizers[name]
        try:
            # Checked before any synthesizer, injected ones included
            text = require_text(request.query.get("text"))
            speech = await synthesizer.synthesize(text)
        except GatewayError as e:
            log.warning("%s request failed (%d): %s", name, e.status, e.message)
            text = e.message if e.status < 500 else f"{TTS_ERROR_PREFIX} {e.message}"
            return web.Response(text=text, status=e.status)
        except Exception as e:
            log.exception("Unexpected %s error", name)
            return web.Response(text=f"{TTS_ERROR_PREFIX} {e}", status=500)

        log.info("%s: %d bytes of %s", name, len(speech.audio), speech.content_type)
        return web.Response(body=speech.audio, content_type=speech.content_type)

    return handle_tts


# ── Backends ──────────────────────────────────────────────────

def build_transcriber(settings: Settings, workers_ai: WorkersAIClient) -> Transcriber:
    if settings.stt_backend == "local":
        return LocalWhisperTranscriber(settings.whisper_model, settings.whisper_device, settings.whisper_compute_type)
    if settings.stt_backend != "workers-ai":
        raise ValueError(f"Unknown STT backend: {settings.stt_backend}")
    return WorkersAITranscriber(workers_ai, settings.whisper_model_id)


def build_synthesizers(settings: Settings, http: httpx.AsyncClient,
                       workers_ai: WorkersAIClient) -> dict[str, SpeechSynthesizer]:
    return {
        "tts": GoogleTranslateSynthesizer(
            http, url=settings.google_tts_url, lang=settings.google_tts_lang, max_chars=settings.tts_max_chars,
        ),
        "melotts": MeloTTSSynthesizer(workers_ai, settings.melotts_model_id, settings.melotts_lang),
    }


def _backends_ctx(transcriber: Transcriber | None, synthesizers: dict | None):
    """Cleanup context that owns the shared httpx client for default backends."""

    async def ctx(app: web.Application):
        settings = app[SETTINGS]
        async with httpx.AsyncClient(timeout=settings.backend_timeout) as http:
            workers_ai = WorkersAIClient(
                settings.cloudflare_account_id, settings.cloudflare_api_token, http,
                base_url=settings.cloudflare_api_base,
            )
            backends = app[BACKENDS]
            backends.transcriber = transcriber or build_transcriber(settings, workers_ai)
            backends.synthesizers = {**build_synthesizers(settings, http, workers_ai), **(synthesizers or {})}
            if not settings.cloudflare_account_id and (transcriber is None or synthesizers is None):
                log.warning("CLOUDFLARE_ACCOUNT_ID not set; Workers AI backends will fail")
            log.info("Backends ready: stt=%s, tts=%s", type(backends.transcriber).__name__, sorted(backends.synthesizers))
            yield
        log.info("Backend HTTP client closed")

    return ctx


# ── App setup ─────────────────────────────────────────────────

def create_app(settings: Settings | None = None, transcriber: Transcriber | None = None,
               synthesizers: dict[str, SpeechSynthesizer] | None = None) -> web.Application:
    """Build the gateway app. Adapters not passed in are built from ``settings`` at startup."""
    settings = settings or Settings()

    app = web.Application(client_max_size=settings.max_body_bytes)
    app[SETTINGS] = settings
    app[BACKENDS] = Backends()
    app.cleanup_ctx.append(_backends_ctx(transcriber, synthesizers))

    app.router.add_get("/", handle_index)
    app.router.add_post("/api/willow", handle_willow)
    app.router.add_get("/api/tts", make_tts_handler("tts"))
    app.router.add_get("/api/melotts", make_tts_handler("melotts"))
    return app


def setup_logging(settings: Settings) -> None:
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    log_file = settings.log_dir / "server.log"

    fmt = logging.Formatter("%(asctime)s %(name)-12s %(levelname)-8s %(message)s")

    console = logging.StreamHandler()
    console.setFormatter(fmt)

    filelog = logging.FileHandler(log_file)
    filelog.setFormatter(fmt)

    logging.basicConfig(level=settings.log_level.upper(), handlers=[console, filelog])

    # Request-level chatter from the backend HTTP client
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    log.info("Logging to %s", log_file)


def main() -> None:
    settings = Settings()
    setup_logging(settings)
    app = create_app(settings)

    ssl_ctx = server_ssl_context(settings)
    scheme = "https" if ssl_ctx else "http"
    log.info("Serving on %s://%s:%d", scheme, settings.host, settings.port)

    web.run_app(app, host=settings.host, port=settings.port, ssl_context=ssl_ctx, print=None)


if __name__ == "__main__":
    main()
