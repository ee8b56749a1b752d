"""Whisper STT adapters — WAV bytes to text."""

import asyncio
import io
import logging
import wave
from typing import Protocol

import numpy as np
from scipy.signal import resample

from .cloudflare import WorkersAIClient
from .errors import BackendUnavailable
from .types import TranscriptionResult

log = logging.getLogger("stt")

WHISPER_RATE = 16000  # Whisper models are trained on 16kHz input
DEFAULT_MODEL_ID = "@cf/openai/whisper"


class Transcriber(Protocol):
    async def transcribe(self, wav: bytes) -> TranscriptionResult:
        ...


class WorkersAITranscriber:
    """Whisper hosted on Cloudflare Workers AI."""

    def __init__(self, client: WorkersAIClient, model_id: str = DEFAULT_MODEL_ID):
        self.client = client
        self.model_id = model_id

    async def transcribe(self, wav: bytes) -> TranscriptionResult:
        log.debug("Sending %d WAV bytes to %s", len(wav), self.model_id)
        result = await self.client.run(self.model_id, content=wav)
        text = result.get("text")
        if not isinstance(text, str):
            raise BackendUnavailable(f"{self.model_id} reply has no transcription text")
        text = text.strip()
        log.info("Transcription: %r", text[:100])
        return TranscriptionResult(text=text)


class LocalWhisperTranscriber:
    """In-process faster-whisper model, loaded on first use."""

    def __init__(self, model_size: str = "base", device: str = "cpu", compute_type: str = "int8"):
        self.model_size = model_size
        self.device = device
        self.compute_type = compute_type
        self._model = None
        self._load_lock = asyncio.Lock()

    def _load_model(self):
        from faster_whisper import WhisperModel

        log.info("Loading faster-whisper model: %s (%s/%s)...", self.model_size, self.device, self.compute_type)
        model = WhisperModel(self.model_size, device=self.device, compute_type=self.compute_type)
        log.info("Whisper model loaded: %s", self.model_size)
        return model

    async def _get_model(self):
        loop = asyncio.get_running_loop()
        async with self._load_lock:
            if self._model is None:
                self._model = await loop.run_in_executor(None, self._load_model)
        return self._model

    async def transcribe(self, wav: bytes) -> TranscriptionResult:
        try:
            model = await self._get_model()
            loop = asyncio.get_running_loop()
            text = await loop.run_in_executor(None, _run_whisper, model, wav)
        except BackendUnavailable:
            raise
        except Exception as e:
            log.error("Local Whisper failed: %s", e)
            raise BackendUnavailable(f"local whisper failed: {e}") from e
        log.info("Transcription: %r", text[:100])
        return TranscriptionResult(text=text)


def wav_to_float32(wav: bytes) -> np.ndarray:
    """Decode a 16-bit PCM WAV into mono float32 samples at 16kHz.

    Multi-channel audio is downmixed by averaging channels.
    """
    try:
        with wave.open(io.BytesIO(wav), "rb") as wf:
            channels = wf.getnchannels()
            sample_width = wf.getsampwidth()
            sample_rate = wf.getframerate()
            frames = wf.readframes(wf.getnframes())
    except (wave.Error, EOFError) as e:
        raise BackendUnavailable(f"cannot decode WAV: {e}") from e

    if sample_width != 2:
        raise BackendUnavailable(f"local whisper needs 16-bit PCM, got {sample_width * 8}-bit")

    # Drop a trailing partial frame if the body was truncated
    usable = len(frames) - len(frames) % (channels * sample_width)
    samples = np.frombuffer(frames[:usable], dtype="<i2").astype(np.float32) / 32768.0
    if channels > 1:
        samples = samples.reshape(-1, channels).mean(axis=1)

    if sample_rate != WHISPER_RATE and len(samples):
        num_output = int(len(samples) * WHISPER_RATE / sample_rate)
        samples = resample(samples, num_output).astype(np.float32)
        log.debug("Resampled %dHz -> %d samples @ %dHz", sample_rate, len(samples), WHISPER_RATE)
    return samples


def _run_whisper(model, wav: bytes) -> str:
    samples = wav_to_float32(wav)
    if not len(samples):
        return ""
    log.debug("Transcribing %.2fs of audio", len(samples) / WHISPER_RATE)
    segments, _info = model.transcribe(samples, beam_size=5, language="en")
    return " ".join(segment.text.strip() for segment in segments).strip()
