"""Audio loading, resampling and chunking utilities for nano_asr."""
import logging
import os
import subprocess
import tempfile
from typing import Iterator, Sequence, Tuple

import librosa
import numpy as np
import soundfile as sf
import torch

logger = logging.getLogger(__name__)

TARGET_SAMPLE_RATE = 16000
SUPPORTED_SAMPLE_RATES = (8000, 16000, 22050, 24000, 32000, 44100, 48000)
DEFAULT_CHUNK_LENGTH = 30  # seconds


def convert_to_wav(path: str) -> str:
    """Decode any ffmpeg-readable file to a 16 kHz mono wav (wav files pass through)."""
    if path.lower().endswith('.wav'):
        return path
    out = tempfile.NamedTemporaryFile(suffix='.wav', delete=False)
    out.close()
    try:
        subprocess.check_call(
            ['ffmpeg', '-y', '-i', path, '-ar', str(TARGET_SAMPLE_RATE), '-ac', '1', out.name],
            stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL,
        )
    except (OSError, subprocess.CalledProcessError):
        os.remove(out.name)
        raise
    return out.name


def load_audio(path: str) -> Tuple[np.ndarray, int]:
    """Read an audio file as float32 mono. Returns (waveform, sample_rate)."""
    audio, sr = sf.read(path, dtype='float32')
    if audio.ndim > 1:
        audio = audio.mean(axis=1)
    return audio.astype('float32'), int(sr)


def resample(audio: np.ndarray, sample_rate: int) -> np.ndarray:
    """Resample a mono waveform to 16 kHz.

    Raises:
        ValueError: for sample rates outside SUPPORTED_SAMPLE_RATES.
    """
    if sample_rate not in SUPPORTED_SAMPLE_RATES:
        raise ValueError(
            f"Unsupported sample rate {sample_rate}; supported: "
            f"{', '.join(map(str, SUPPORTED_SAMPLE_RATES))}"
        )
    if sample_rate == TARGET_SAMPLE_RATE:
        return audio
    logger.debug("Resampling %d samples from %d Hz", len(audio), sample_rate)
    return librosa.resample(audio, orig_sr=sample_rate, target_sr=TARGET_SAMPLE_RATE).astype('float32')


def to_tensor(audio) -> torch.Tensor:
    if isinstance(audio, torch.Tensor):
        return audio.float()
    return torch.from_numpy(np.asarray(audio, dtype='float32'))


def pad_batch(waveforms: Sequence) -> Tuple[torch.Tensor, torch.Tensor]:
    """Stack 1-D waveforms into [B, N] (zero padded) plus lengths [B]."""
    items   = [to_tensor(w).reshape(-1) for w in waveforms]
    lengths = torch.tensor([len(w) for w in items], dtype=torch.long)
    batch   = torch.zeros(len(items), int(lengths.max()) if items else 0)
    for i, w in enumerate(items):
        batch[i, :len(w)] = w
    return batch, lengths


def split_audio(
    audio: np.ndarray,
    sample_rate: int = TARGET_SAMPLE_RATE,
    chunk_length: float = DEFAULT_CHUNK_LENGTH,
) -> Iterator[Tuple[np.ndarray, float]]:
    """Yield (chunk, offset_seconds) windows of at most chunk_length seconds."""
    if chunk_length <= 0:
        raise ValueError(f"chunk_length must be positive, got {chunk_length}")
    step = int(chunk_length * sample_rate)
    for offset in range(0, len(audio), step):
        yield audio[offset:offset + step], offset / sample_rate
