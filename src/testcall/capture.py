"""Exclusive microphone capture with a maximum-duration cutoff.

An ``AudioCaptureSession`` owns at most one recording handle. ``start()``
opens the microphone and arms a timer; whichever of ``stop()`` and the timer
runs first finalizes the file and resolves ``wait_closed()``. The other one
finds no handle and does nothing.
"""

import asyncio
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import soundfile as sf

from testcall.device import RECORD, DeviceAudio
from testcall.errors import CaptureError, MicrophoneBusyError

logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000
CHANNELS = 1


@dataclass(frozen=True)
class CapturedAudio:
    path: Path
    duration: float
    reason: str  # "manual" | "timeout" | "mute"


class RecordingHandle(Protocol):
    def close(self) -> None: ...


class Microphone(Protocol):
    def open(self, path: Path) -> RecordingHandle: ...


class _SoundDeviceRecording:
    def __init__(self, stream, file):
        self._stream = stream
        self._file = file

    def close(self) -> None:
        try:
            self._stream.stop()
            self._stream.close()
        finally:
            self._file.close()
            SoundDeviceMicrophone._live = None


class SoundDeviceMicrophone:
    """Records the default input device to a 16-bit mono WAV file."""

    # One live recording per process, whichever instance opened it.
    _live: Optional[_SoundDeviceRecording] = None

    def __init__(self, samplerate: int = SAMPLE_RATE, channels: int = CHANNELS):
        self.samplerate = samplerate
        self.channels = channels

    def open(self, path: Path) -> _SoundDeviceRecording:
        if SoundDeviceMicrophone._live is not None:
            raise MicrophoneBusyError("microphone already recording")
        import sounddevice as sd

        file = sf.SoundFile(
            str(path), mode="w",
            samplerate=self.samplerate,
            channels=self.channels,
            subtype="PCM_16",
            format="WAV",
        )

        def _sd_callback(indata, frames, time_info, status):
            if status:
                logger.debug("sounddevice input status: %s", status)
            file.write(indata.copy())

        stream = None
        try:
            stream = sd.InputStream(
                samplerate=self.samplerate,
                channels=self.channels,
                dtype="int16",
                callback=_sd_callback,
            )
            stream.start()
        except Exception as e:
            if stream is not None:
                stream.close()
            file.close()
            raise CaptureError(f"could not open microphone: {e}") from e

        handle = _SoundDeviceRecording(stream, file)
        SoundDeviceMicrophone._live = handle
        return handle


def _discard(path: Optional[Path]) -> None:
    if path is None:
        return
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove capture file %s: %s", path, e)


class AudioCaptureSession:
    def __init__(
        self,
        microphone: Microphone,
        device: DeviceAudio,
        *,
        max_duration: float = 10.0,
        directory: Optional[str] = None,
    ):
        self._microphone = microphone
        self._device = device
        self.max_duration = max_duration
        self._directory = directory
        self._handle: Optional[RecordingHandle] = None
        self._path: Optional[Path] = None
        self._started_at = 0.0
        self._timer: Optional[asyncio.Task] = None
        self._closed: Optional[asyncio.Future] = None

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    async def start(self) -> None:
        """Acquire the microphone and start buffering to a transient file.

        Raises ``CaptureError`` (``MicrophoneBusyError`` if a handle is
        already live); nothing is left open on failure.
        """
        if self._handle is not None:
            raise MicrophoneBusyError("capture session already open")

        self._device.configure_audio_session(RECORD)
        fd, name = tempfile.mkstemp(prefix="testcall-", suffix=".wav", dir=self._directory)
        os.close(fd)
        path = Path(name)
        try:
            handle = self._microphone.open(path)
        except CaptureError:
            _discard(path)
            raise
        except Exception as e:
            _discard(path)
            raise CaptureError(f"could not open microphone: {e}") from e

        self._handle = handle
        self._path = path
        self._started_at = time.monotonic()
        self._closed = asyncio.get_running_loop().create_future()
        self._timer = asyncio.create_task(self._cutoff(self.max_duration))
        logger.info("Capture started (ceiling %.1fs)", self.max_duration)

    async def _cutoff(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._handle is not None:
            logger.info("Capture reached %.1fs ceiling, stopping", delay)
            self._finish("timeout")

    async def stop(self, reason: str = "manual") -> Optional[CapturedAudio]:
        """Finalize the capture. A no-op returning None if nothing is open."""
        return self._finish(reason)

    async def wait_closed(self) -> Optional[CapturedAudio]:
        """Resolve once the current capture closes; None if it was discarded."""
        if self._closed is None:
            return None
        return await self._closed

    async def cancel(self) -> None:
        """Stop and discard the current capture, ignoring errors."""
        handle, path = self._take()
        if handle is None:
            return
        try:
            handle.close()
        except Exception as e:
            logger.warning("Ignoring error while discarding capture: %s", e)
        _discard(path)
        self._resolve(None)
        logger.info("Capture discarded")

    def _take(self):
        handle, path = self._handle, self._path
        self._handle = None
        self._path = None
        if self._timer is not None and self._timer is not asyncio.current_task():
            self._timer.cancel()
        self._timer = None
        return handle, path

    def _resolve(self, result: Optional[CapturedAudio]) -> None:
        if self._closed is not None and not self._closed.done():
            self._closed.set_result(result)

    def _finish(self, reason: str) -> Optional[CapturedAudio]:
        handle, path = self._take()
        if handle is None:
            return None
        duration = time.monotonic() - self._started_at
        try:
            handle.close()
        except Exception as e:
            # close() releases the device in its own finally block
            logger.error("Failed to finalize capture: %s", e)
            _discard(path)
            self._resolve(None)
            return None

        captured = CapturedAudio(path=path, duration=duration, reason=reason)
        logger.info("Capture stopped (%s) after %.1fs", reason, duration)
        self._resolve(captured)
        return captured
