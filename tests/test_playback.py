import asyncio

import pytest

from conftest import AudioTimeline, FakeDevice, FakeSpeaker, FakeSynthesizer
from testcall.config import Voice
from testcall.device import PLAYBACK
from testcall.playback import SpeechPlayback
from testcall.synthesis import SynthesizedAudio

VOICE = Voice()


@pytest.fixture
def timeline():
    return AudioTimeline()


@pytest.fixture
def speaker(timeline):
    return FakeSpeaker(timeline)


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def device():
    return FakeDevice()


class TestSpeak:
    async def test_plays_and_cleans_up(self, synthesizer, speaker, device, timeline, tmp_path):
        playback = SpeechPlayback(synthesizer, speaker, device, cache_dir=str(tmp_path))
        assert await playback.speak("Hello there.", VOICE) is True
        assert speaker.spoken == ["Hello there."]
        assert synthesizer.calls == [("Hello there.", VOICE)]
        assert device.modes == [PLAYBACK]
        assert timeline.events == ["speaker_open", "speaker_close"]
        assert not playback.is_playing
        assert list(tmp_path.iterdir()) == []

    async def test_cache_file_uses_content_type_suffix(self, speaker, device, tmp_path):
        class Mp3Synthesizer:
            async def synthesize(self, text, voice):
                return SynthesizedAudio(data=b"ID3", content_type="audio/mpeg")

        playback = SpeechPlayback(Mp3Synthesizer(), speaker, device, cache_dir=str(tmp_path))
        await playback.speak("Hi", VOICE)
        assert speaker.paths[0].suffix == ".mp3"

    async def test_blank_text_is_skipped(self, synthesizer, speaker, device, tmp_path):
        playback = SpeechPlayback(synthesizer, speaker, device, cache_dir=str(tmp_path))
        assert await playback.speak("   ", VOICE) is False
        assert synthesizer.calls == []

    async def test_synthesis_failure_resolves_false(self, synthesizer, speaker, device, tmp_path):
        synthesizer.fail = True
        playback = SpeechPlayback(synthesizer, speaker, device, cache_dir=str(tmp_path))
        assert await playback.speak("Hello", VOICE) is False
        assert speaker.spoken == []
        assert not playback.is_playing

    async def test_device_failure_resolves_false(self, synthesizer, device, tmp_path):
        class BrokenSpeaker:
            def play(self, path):
                raise RuntimeError("output device unplugged")

        playback = SpeechPlayback(synthesizer, BrokenSpeaker(), device, cache_dir=str(tmp_path))
        assert await playback.speak("Hello", VOICE) is False
        assert list(tmp_path.iterdir()) == []


class TestCancel:
    async def test_cancel_stops_playback(self, synthesizer, timeline, device, tmp_path):
        speaker = FakeSpeaker(timeline, duration=5.0)
        playback = SpeechPlayback(synthesizer, speaker, device, cache_dir=str(tmp_path))
        task = asyncio.ensure_future(playback.speak("A long answer.", VOICE))
        while not playback.is_playing:
            await asyncio.sleep(0.005)

        await playback.cancel()
        assert await asyncio.wait_for(task, 1.0) is False
        assert timeline.events == ["speaker_open", "speaker_close"]
        assert list(tmp_path.iterdir()) == []

    async def test_cancel_during_synthesis_skips_playback(self, speaker, device, tmp_path):
        release = asyncio.Event()

        class SlowSynthesizer:
            async def synthesize(self, text, voice):
                await release.wait()
                return SynthesizedAudio(data=b"late")

        playback = SpeechPlayback(SlowSynthesizer(), speaker, device, cache_dir=str(tmp_path))
        task = asyncio.ensure_future(playback.speak("Hello", VOICE))
        await asyncio.sleep(0.01)
        await playback.cancel()
        release.set()
        assert await task is False
        assert speaker.spoken == []

    async def test_cancel_when_idle_is_noop(self, synthesizer, speaker, device):
        playback = SpeechPlayback(synthesizer, speaker, device)
        await playback.cancel()
        assert not playback.is_playing


class TestOnSpeaking:
    async def test_reports_start_and_stop(self, synthesizer, speaker, device, tmp_path):
        events = []
        playback = SpeechPlayback(
            synthesizer, speaker, device, cache_dir=str(tmp_path), on_speaking=events.append
        )
        await playback.speak("Hello", VOICE)
        assert events == [True, False]

    async def test_observer_errors_are_ignored(self, synthesizer, speaker, device, tmp_path):
        def boom(speaking):
            raise RuntimeError("ui gone")

        playback = SpeechPlayback(synthesizer, speaker, device, cache_dir=str(tmp_path), on_speaking=boom)
        assert await playback.speak("Hello", VOICE) is True
