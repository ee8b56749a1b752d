"""Gateway settings.

Uses pydantic-settings to load environment variables and the project's .env
file, with type validation and defaults for a local Willow setup.
"""

from pathlib import Path

from pydantic_settings import BaseSettings

from engine.cloudflare import DEFAULT_API_BASE

PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    # HTTP server
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    log_dir: Path = PROJECT_ROOT / "logs"

    # HTTPS: operator certificate, else self-signed for local_ip
    https: bool = False
    tls_cert_file: Path | None = None
    tls_key_file: Path | None = None
    local_ip: str = "192.168.1.1"
    cert_dir: Path = PROJECT_ROOT / "certs"

    # Willow request checks
    device_token: str = "Willow"
    strict_payload_length: bool = False
    max_body_bytes: int = 16 * 1024 * 1024  # ~8 minutes of 16kHz mono 16-bit PCM

    # STT backend: "workers-ai" or "local" (faster-whisper)
    stt_backend: str = "workers-ai"
    whisper_model: str = "base"
    whisper_device: str = "cpu"
    whisper_compute_type: str = "int8"

    # Cloudflare Workers AI
    cloudflare_account_id: str = ""
    cloudflare_api_token: str = ""
    cloudflare_api_base: str = DEFAULT_API_BASE
    whisper_model_id: str = "@cf/openai/whisper"
    melotts_model_id: str = "@cf/myshell-ai/melotts"
    melotts_lang: str = "en"

    # Google Translate TTS
    google_tts_url: str = "https://translate.google.com/translate_tts"
    google_tts_lang: str = "en-US"
    tts_max_chars: int = 200

    # Timeouts (seconds)
    backend_timeout: float = 30.0

    model_config = {
        "env_file": str(PROJECT_ROOT / ".env"),
        "extra": "ignore",
    }
