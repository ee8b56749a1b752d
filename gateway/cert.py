"""TLS for the gateway: operator-supplied certificate, or a self-signed fallback."""

import logging
import ssl
import subprocess
from pathlib import Path

from gateway.config import Settings

log = logging.getLogger("cert")

SELF_SIGNED_DAYS = 365


def self_signed_paths(cert_dir: Path) -> tuple[Path, Path]:
    return cert_dir / "self-signed.crt", cert_dir / "self-signed.key"


def generate_self_signed(cert_dir: Path, local_ip: str) -> tuple[Path, Path]:
    """Create a self-signed cert whose SAN is ``local_ip``; reuses a cached pair."""
    cert_file, key_file = self_signed_paths(cert_dir)
    if cert_file.exists() and key_file.exists():
        return cert_file, key_file

    cert_dir.mkdir(parents=True, exist_ok=True)
    log.info("Generating self-signed cert for %s in %s", local_ip, cert_dir)
    subprocess.run(
        [
            "openssl", "req", "-x509", "-nodes",
            "-newkey", "ec", "-pkeyopt", "ec_paramgen_curve:prime256v1",
            "-days", str(SELF_SIGNED_DAYS),
            "-subj", "/CN=willow-speech-gateway",
            "-addext", f"subjectAltName=IP:{local_ip}",
            "-keyout", str(key_file),
            "-out", str(cert_file),
        ],
        check=True,
        capture_output=True,
    )
    return cert_file, key_file


def resolve_cert_pair(settings: Settings) -> tuple[Path, Path]:
    """Pick the certificate and key to serve.

    ``TLS_CERT_FILE``/``TLS_KEY_FILE`` win when set; they must be set together.
    Otherwise a self-signed pair for ``LOCAL_IP`` is used.
    """
    cert_file, key_file = settings.tls_cert_file, settings.tls_key_file
    if cert_file and key_file:
        log.info("Using TLS certificate %s", cert_file)
        return cert_file, key_file
    if cert_file or key_file:
        raise ValueError("TLS_CERT_FILE and TLS_KEY_FILE must be set together")
    log.warning("No TLS certificate configured; falling back to self-signed for %s", settings.local_ip)
    return generate_self_signed(settings.cert_dir, settings.local_ip)


def server_ssl_context(settings: Settings) -> ssl.SSLContext | None:
    """SSL context for ``web.run_app``, or None when HTTPS is off."""
    if not settings.https:
        return None
    cert_file, key_file = resolve_cert_pair(settings)
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.load_cert_chain(str(cert_file), str(key_file))
    return ctx
