"""Exclusive speaker playback of synthesized assistant speech.

``SpeechPlayback.speak()`` resolves exactly once, after playback finishes,
fails, or is cancelled, and never raises for synthesis or device errors.
The transient audio file and the native playback are released on every
path.
"""

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Optional, Protocol

import soundfile as sf

from testcall.config import Voice
from testcall.device import PLAYBACK, DeviceAudio
from testcall.synthesis import SynthesizedAudio, Synthesizer

logger = logging.getLogger(__name__)


class PlaybackHandle(Protocol):
    async def wait(self) -> None: ...

    def stop(self) -> None: ...


class Speaker(Protocol):
    def play(self, path: Path) -> PlaybackHandle: ...


class _SoundDevicePlayback:
    async def wait(self) -> None:
        import sounddevice as sd

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, sd.wait)

    def stop(self) -> None:
        import sounddevice as sd

        sd.stop()


class SoundDeviceSpeaker:
    """Plays an audio file on the default output device."""

    def play(self, path: Path) -> _SoundDevicePlayback:
        import sounddevice as sd

        data, sample_rate = sf.read(str(path), dtype="float32")
        sd.play(data, samplerate=sample_rate)
        return _SoundDevicePlayback()


class SpeechPlayback:
    def __init__(
        self,
        synthesizer: Synthesizer,
        speaker: Speaker,
        device: DeviceAudio,
        *,
        cache_dir: Optional[str] = None,
        on_speaking: Optional[Callable[[bool], None]] = None,
    ):
        self._synthesizer = synthesizer
        self._speaker = speaker
        self._device = device
        self._cache_dir = cache_dir
        self._on_speaking = on_speaking
        self._handle: Optional[PlaybackHandle] = None
        self._generation = 0

    @property
    def is_playing(self) -> bool:
        return self._handle is not None

    async def speak(self, text: str, voice: Voice) -> bool:
        """Synthesize and play ``text``. Returns True if it was heard in full."""
        if not text or not text.strip():
            return False

        generation = self._generation
        path: Optional[Path] = None
        handle: Optional[PlaybackHandle] = None
        try:
            audio = await self._synthesizer.synthesize(text, voice)
            if generation != self._generation:
                logger.debug("Playback cancelled during synthesis")
                return False
            path = self._write_cache(audio)
            self._device.configure_audio_session(PLAYBACK)
            handle = self._speaker.play(path)
            self._handle = handle
            self._notify(True)
            await handle.wait()
            return generation == self._generation
        except Exception:
            logger.exception("Speech playback failed, continuing without audio")
            return False
        finally:
            if handle is not None:
                self._release(handle)
            if path is not None:
                _remove(path)

    async def cancel(self) -> None:
        """Stop any speech in progress. Never raises."""
        self._generation += 1
        handle = self._handle
        if handle is not None:
            self._release(handle)

    def _release(self, handle: PlaybackHandle) -> None:
        if self._handle is not handle:
            return
        self._handle = None
        try:
            handle.stop()
        except Exception as e:
            logger.warning("Ignoring error while stopping playback: %s", e)
        self._notify(False)

    def _write_cache(self, audio: SynthesizedAudio) -> Path:
        fd, name = tempfile.mkstemp(prefix="testcall-tts-", suffix=audio.suffix, dir=self._cache_dir)
        with os.fdopen(fd, "wb") as f:
            f.write(audio.data)
        return Path(name)

    def _notify(self, speaking: bool) -> None:
        if self._on_speaking is None:
            return
        try:
            self._on_speaking(speaking)
        except Exception as e:
            logger.debug("on_speaking callback raised: %s", e)


def _remove(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove TTS cache file %s: %s", path, e)
