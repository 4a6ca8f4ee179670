import asyncio
from unittest.mock import AsyncMock

import pytest

from testcall.capture import AudioCaptureSession
from testcall.config import HarnessSettings, ReceptionistConfig
from testcall.controller import ConversationController
from testcall.errors import SynthesisError
from testcall.playback import SpeechPlayback
from testcall.synthesis import SynthesizedAudio
from testcall.transcription import TranscriptionGateway


async def wait_until(predicate, timeout=1.0):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


class AudioTimeline:
    """Ordered record of microphone and speaker open/close events.

    ``overlapped`` flips to True if the microphone and the speaker are ever
    live at the same time, or either is opened twice.
    """

    def __init__(self):
        self.events = []
        self.mic_live = 0
        self.speaker_live = 0
        self.overlapped = False

    def mark(self, event):
        self.events.append(event)
        if event == "mic_open":
            self.mic_live += 1
        elif event == "mic_close":
            self.mic_live -= 1
        elif event == "speaker_open":
            self.speaker_live += 1
        elif event == "speaker_close":
            self.speaker_live -= 1
        if (self.mic_live and self.speaker_live) or self.mic_live > 1 or self.speaker_live > 1:
            self.overlapped = True


class FakeDevice:
    def __init__(self, granted=True):
        self.granted = granted
        self.permission_gate = None
        self.modes = []

    async def request_microphone_permission(self):
        if self.permission_gate is not None:
            await self.permission_gate.wait()
        return self.granted

    def configure_audio_session(self, mode):
        self.modes.append(mode)


class FakeRecording:
    def __init__(self, timeline, fail_close=False):
        self.timeline = timeline
        self.fail_close = fail_close
        self.closed = 0

    def close(self):
        self.closed += 1
        self.timeline.mark("mic_close")
        if self.fail_close:
            raise RuntimeError("could not finalize wav")


class FakeMicrophone:
    def __init__(self, timeline):
        self.timeline = timeline
        self.fail_open = None
        self.fail_close = False
        self.handles = []
        self.paths = []

    def open(self, path):
        if self.fail_open is not None:
            raise self.fail_open
        path.write_bytes(b"RIFF-fake-capture")
        self.paths.append(path)
        self.timeline.mark("mic_open")
        handle = FakeRecording(self.timeline, fail_close=self.fail_close)
        self.handles.append(handle)
        return handle


class FakePlayback:
    def __init__(self, timeline, duration):
        self.timeline = timeline
        self.duration = duration
        self.stopped = asyncio.Event()

    async def wait(self):
        try:
            await asyncio.wait_for(self.stopped.wait(), self.duration)
        except asyncio.TimeoutError:
            pass

    def stop(self):
        if not self.stopped.is_set():
            self.stopped.set()
            self.timeline.mark("speaker_close")


class FakeSpeaker:
    def __init__(self, timeline, duration=0.0):
        self.timeline = timeline
        self.duration = duration
        self.spoken = []
        self.paths = []

    def play(self, path):
        self.spoken.append(path.read_bytes().decode())
        self.paths.append(path)
        self.timeline.mark("speaker_open")
        return FakePlayback(self.timeline, self.duration)


class FakeSynthesizer:
    def __init__(self):
        self.calls = []
        self.fail = False

    async def synthesize(self, text, voice):
        self.calls.append((text, voice))
        if self.fail:
            raise SynthesisError("voice preview unavailable")
        return SynthesizedAudio(data=text.encode(), content_type="audio/wav")


class Harness:
    """A controller wired to in-memory audio devices and a mocked backend."""

    def __init__(self, tmp_path, settings):
        self.timeline = AudioTimeline()
        self.device = FakeDevice()
        self.microphone = FakeMicrophone(self.timeline)
        self.speaker = FakeSpeaker(self.timeline)
        self.synthesizer = FakeSynthesizer()

        self.client = AsyncMock()
        self.client.transcribe.return_value = ""
        self.client.chat.return_value = "Got it."
        self.client.extract_job.return_value = None

        self.capture = AudioCaptureSession(
            self.microphone, self.device,
            max_duration=settings.capture_max_seconds,
            directory=str(tmp_path),
        )
        self.playback = SpeechPlayback(
            self.synthesizer, self.speaker, self.device, cache_dir=str(tmp_path)
        )
        self.transcriber = TranscriptionGateway(self.client, min_chars=settings.min_transcript_chars)
        self.states = []
        self.notices = []
        self.settings = settings
        self.controller = self.build()

    def build(self, **kwargs):
        return ConversationController(
            device=self.device,
            capture=self.capture,
            playback=self.playback,
            transcriber=self.transcriber,
            client=self.client,
            settings=self.settings,
            on_state=self.states.append,
            on_notice=self.notices.append,
            **kwargs,
        )

    async def wait_listening(self, timeout=1.0):
        await wait_until(lambda: self.capture.is_open, timeout)

    async def say(self, text=None):
        """Wait for the microphone, then finish the caller's turn."""
        await self.wait_listening()
        if text is not None:
            self.client.transcribe.return_value = text
        assert await self.controller.send() is True


@pytest.fixture
def settings():
    return HarnessSettings(capture_max_seconds=5.0, auto_close_seconds=60.0)


@pytest.fixture
def config():
    return ReceptionistConfig(
        greeting="Hi, this is Flynn. How can I help?",
        questions=("What's the issue?", "What's your address?"),
    )


@pytest.fixture
def harness(tmp_path, settings):
    return Harness(tmp_path, settings)
