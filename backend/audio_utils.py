from __future__ import annotations

import struct

import numpy as np


def float_to_pcm16(samples: np.ndarray) -> bytes:
    """Convert float samples in [-1, 1] to little-endian signed 16-bit PCM."""
    clipped = np.clip(np.asarray(samples, dtype=np.float32).reshape(-1), -1.0, 1.0)
    return (clipped * 32767.0).astype("<i2").tobytes()


def pcm16_to_float(pcm: bytes, channels: int = 1) -> np.ndarray:
    """Decode little-endian PCM16 into float32 samples, one column per channel."""
    usable = len(pcm) - (len(pcm) % (2 * channels))
    ints = np.frombuffer(pcm[:usable], dtype="<i2")
    samples = ints.astype(np.float32) / 32768.0
    return samples.reshape(-1, channels)


def duration_seconds(samples: np.ndarray, sample_rate: int) -> float:
    return len(samples) / float(sample_rate)


def mean_abs_level(samples: np.ndarray) -> float:
    """Mean absolute amplitude, used for the input loudness indicator."""
    if samples.size == 0:
        return 0.0
    return float(np.mean(np.abs(samples)))


def pcm_s16le_to_wav(pcm: bytes, sample_rate: int = 16000, channels: int = 1) -> bytes:
    # Minimal RIFF/WAVE header for PCM s16le.
    byte_rate = sample_rate * channels * 2
    block_align = channels * 2
    data_size = len(pcm)
    riff_size = 36 + data_size
    return b"".join(
        [
            b"RIFF",
            struct.pack("<I", riff_size),
            b"WAVE",
            b"fmt ",
            struct.pack("<I", 16),  # PCM fmt chunk size
            struct.pack("<H", 1),  # audio format = PCM
            struct.pack("<H", channels),
            struct.pack("<I", sample_rate),
            struct.pack("<I", byte_rate),
            struct.pack("<H", block_align),
            struct.pack("<H", 16),  # bits per sample
            b"data",
            struct.pack("<I", data_size),
            pcm,
        ]
    )
