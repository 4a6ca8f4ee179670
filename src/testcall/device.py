"""Microphone permission and audio-session primitives.

On a desktop there is no permission prompt, so "granted" means the host has
a usable default input device. The audio-session mode is tracked so the
capture and playback layers can assert they never share the device.
"""

import asyncio
import logging
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

RECORD = "record"
PLAYBACK = "playback"


class DeviceAudio(Protocol):
    async def request_microphone_permission(self) -> bool: ...

    def configure_audio_session(self, mode: str) -> None: ...


class SoundDeviceAudio:
    def __init__(self, input_device: Optional[int] = None, output_device: Optional[int] = None):
        self.input_device = input_device
        self.output_device = output_device
        self.mode: Optional[str] = None

    async def request_microphone_permission(self) -> bool:
        try:
            import sounddevice as sd
        except OSError as e:
            logger.warning("PortAudio library not available: %s", e)
            return False

        loop = asyncio.get_running_loop()
        try:
            info = await loop.run_in_executor(None, sd.query_devices, self.input_device, "input")
        except (sd.PortAudioError, ValueError) as e:
            logger.warning("No usable input device: %s", e)
            return False
        if not info or info.get("max_input_channels", 0) < 1:
            logger.warning("Default input device has no input channels")
            return False
        logger.info("Microphone available: %s", info.get("name", "?"))
        return True

    def configure_audio_session(self, mode: str) -> None:
        if mode not in (RECORD, PLAYBACK):
            raise ValueError(f"unknown audio session mode {mode!r}")
        if mode == self.mode:
            return
        if self.input_device is not None or self.output_device is not None:
            import sounddevice as sd

            sd.default.device = (self.input_device, self.output_device)
        logger.debug("Audio session %s -> %s", self.mode, mode)
        self.mode = mode
