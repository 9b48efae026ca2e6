import io
import threading
from typing import List, Optional

import numpy as np
import soundfile as sf

from companion_ai.errors import MicrophonePermissionError

from . import monitoring

try:
    import sounddevice as sd
except Exception:  # pragma: no cover - PortAudio missing on this host
    sd = None  # type: ignore

logger = monitoring.get_logger("audio")


def encode_wav(frames: List[np.ndarray], sample_rate: int, channels: int) -> bytes:
    """Encode captured float32 blocks as 16-bit PCM WAV bytes."""
    if frames:
        audio = np.concatenate(frames, axis=0)
    else:
        audio = np.zeros((0, channels), dtype=np.float32)
    audio = np.clip(audio, -1.0, 1.0)
    buf = io.BytesIO()
    sf.write(buf, audio, sample_rate, format="WAV", subtype="PCM_16")
    return buf.getvalue()


class MicrophoneCapture:
    """Push-to-talk capture from the default input device.

    `open()` starts an InputStream whose callback buffers blocks; `close()`
    stops it and returns one WAV blob. The stream is released on every path.
    """

    def __init__(self, sample_rate: int = 16000, channels: int = 1, blocksize: int = 1024):
        self.sample_rate = sample_rate
        self.channels = channels
        self.blocksize = blocksize
        self._stream = None
        self._frames: List[np.ndarray] = []
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def _callback(self, indata, frames, time_info, status):
        if status:
            logger.debug("input status: %s", status)
        with self._lock:
            self._frames.append(indata.copy())

    def open(self) -> None:
        if sd is None:
            raise MicrophonePermissionError(
                "Could not access microphone. sounddevice/PortAudio is not available on this machine."
            )
        if self._stream is not None:
            raise RuntimeError("capture already open")
        with self._lock:
            self._frames = []
        stream = None
        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
                blocksize=self.blocksize,
                callback=self._callback,
            )
            stream.start()
        except Exception as e:
            if stream is not None:
                stream.close()
            logger.error("Error accessing microphone: %s", e)
            raise MicrophonePermissionError("Could not access microphone. Please check permissions.") from e
        self._stream = stream
        logger.debug("microphone open (%d Hz, %d ch)", self.sample_rate, self.channels)

    def _release(self) -> List[np.ndarray]:
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.stop()
            finally:
                stream.close()
        with self._lock:
            frames, self._frames = self._frames, []
        return frames

    def close(self) -> bytes:
        frames = self._release()
        data = encode_wav(frames, self.sample_rate, self.channels)
        logger.debug("captured %d blocks, %d bytes", len(frames), len(data))
        return data

    def discard(self) -> None:
        frames = self._release()
        logger.debug("discarded %d blocks", len(frames))


def wav_duration(data: bytes) -> Optional[float]:
    try:
        info = sf.info(io.BytesIO(data))
    except Exception:
        return None
    return info.frames / float(info.samplerate) if info.samplerate else None
