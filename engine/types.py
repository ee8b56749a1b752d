"""Shared data types for the speech engine."""

from dataclasses import dataclass

DEFAULT_LANGUAGE = "en"  # Willow only needs a language tag; no detection is done
MPEG_CONTENT_TYPE = "audio/mpeg"


@dataclass(frozen=True)
class TranscriptionResult:
    """What the Willow device expects back from an STT request."""
    text: str
    language: str = DEFAULT_LANGUAGE

    def to_dict(self) -> dict:
        return {"language": self.language, "text": self.text}


@dataclass(frozen=True)
class SynthesizedAudio:
    """Encoded audio returned by a TTS backend."""
    audio: bytes
    content_type: str = MPEG_CONTENT_TYPE
