"""RIFF/WAVE header synthesis for headerless PCM streams.

Willow devices send bare PCM samples and describe the stream in x-audio-*
headers. Whisper backends want a decodable file, so we prepend the canonical
44-byte WAV header built from those values.
"""

import struct

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

WAV_HEADER_SIZE = 44
FMT_CHUNK_SIZE = 16  # PCM fmt chunk carries no extension
PCM_FORMAT = 1

UINT16_MAX = 0xFFFF
UINT32_MAX = 0xFFFFFFFF

# RIFF size field is 36 + data size, so the data size must leave room for it
MAX_PAYLOAD_BYTES = UINT32_MAX - (WAV_HEADER_SIZE - 8)

# "<4sI4s" RIFF preamble, "4sIHHIIHH" fmt chunk, "4sI" data chunk header
_HEADER_STRUCT = struct.Struct("<4sI4s4sIHHIIHH4sI")


class AudioStreamDescriptor(BaseModel):
    """Validated description of a raw PCM stream.

    Integer strings from request headers are coerced by pydantic; anything
    that is not a whole number in range fails validation.
    """

    model_config = ConfigDict(frozen=True)

    channels: int = Field(ge=1, le=UINT16_MAX)
    sample_rate: int = Field(ge=1, le=UINT32_MAX)
    bits_per_sample: int = Field(ge=8, le=UINT16_MAX)
    payload_byte_length: int = Field(ge=0, le=MAX_PAYLOAD_BYTES)

    @field_validator("bits_per_sample")
    @classmethod
    def check_whole_bytes(cls, value: int) -> int:
        if value % 8:
            raise ValueError("bits per sample must be a multiple of 8")
        return value

    @model_validator(mode="after")
    def check_derived_fields(self) -> "AudioStreamDescriptor":
        if self.block_align > UINT16_MAX or self.byte_rate > UINT32_MAX:
            raise ValueError("block align or byte rate overflows its header field")
        return self

    @property
    def block_align(self) -> int:
        """Bytes per sample frame across all channels."""
        return self.channels * self.bits_per_sample // 8

    @property
    def byte_rate(self) -> int:
        return self.sample_rate * self.block_align


def synthesize_header(descriptor: AudioStreamDescriptor) -> bytes:
    """Build the 44-byte WAV header for a PCM stream. Pure and deterministic."""
    data_size = descriptor.payload_byte_length
    return _HEADER_STRUCT.pack(
        b"RIFF",
        WAV_HEADER_SIZE - 8 + data_size,
        b"WAVE",
        b"fmt ",
        FMT_CHUNK_SIZE,
        PCM_FORMAT,
        descriptor.channels,
        descriptor.sample_rate,
        descriptor.byte_rate,
        descriptor.block_align,
        descriptor.bits_per_sample,
        b"data",
        data_size,
    )


def assemble(header: bytes, payload: bytes) -> bytes:
    """Concatenate header and PCM payload into one WAV file buffer."""
    return bytes(header) + bytes(payload)


def build_wav(descriptor: AudioStreamDescriptor, payload: bytes) -> bytes:
    """Synthesize a header for ``descriptor`` and prepend it to ``payload``."""
    return assemble(synthesize_header(descriptor), payload)
