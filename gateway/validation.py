"""Willow request checks — run before the PCM body is read."""

import logging
from typing import Mapping

from pydantic import ValidationError

from engine.errors import InvalidClient, MissingStreamMetadata, PayloadLengthMismatch, UnsupportedCodec
from engine.wav import AudioStreamDescriptor

log = logging.getLogger("gateway.validation")

STREAM_HEADERS = ("x-audio-channel", "x-audio-sample-rate", "x-audio-bits", "x-audio-codec")
PCM_CODEC = "pcm"


def _parse(**fields) -> AudioStreamDescriptor:
    try:
        return AudioStreamDescriptor(**fields)
    except ValidationError as e:
        log.warning("Invalid stream headers: %s", e.errors(include_url=False))
        raise MissingStreamMetadata() from e


def validate_stream_headers(headers: Mapping[str, str], device_token: str = "Willow") -> AudioStreamDescriptor:
    """Check a Willow STT request's headers and parse the stream description.

    ``headers`` must be case-insensitive (aiohttp's CIMultiDictProxy is).
    Raises the first failing check, in order: user-agent, missing stream
    headers, codec, then numeric parsing. Without a content-length the
    payload length is 0 until the body has been read.
    """
    user_agent = headers.get("user-agent", "")
    if device_token not in user_agent:
        log.warning("Rejected user-agent %r", user_agent[:80])
        raise InvalidClient()

    missing = [name for name in STREAM_HEADERS if name not in headers]
    if missing:
        log.warning("Missing stream headers: %s", ", ".join(missing))
        raise MissingStreamMetadata()

    # Case-insensitive, so "PCM" and "pcm_s16le" both pass
    codec = headers["x-audio-codec"]
    if PCM_CODEC not in codec.lower():
        log.warning("Rejected codec %r", codec)
        raise UnsupportedCodec()

    return _parse(
        channels=headers["x-audio-channel"].strip(),
        sample_rate=headers["x-audio-sample-rate"].strip(),
        bits_per_sample=headers["x-audio-bits"].strip(),
        payload_byte_length=headers.get("content-length", "0").strip(),
    )


def with_payload_length(descriptor: AudioStreamDescriptor, length: int) -> AudioStreamDescriptor:
    """Re-validate ``descriptor`` with the length of the body actually read."""
    return _parse(**{**descriptor.model_dump(), "payload_byte_length": length})


def check_payload_length(descriptor: AudioStreamDescriptor, body_length: int) -> None:
    """Reject bodies whose size disagrees with the declared content-length."""
    if body_length != descriptor.payload_byte_length:
        log.warning("Body is %d bytes, content-length declared %d", body_length, descriptor.payload_byte_length)
        raise PayloadLengthMismatch(
            f"Body is {body_length} bytes but content-length declared {descriptor.payload_byte_length}."
        )
