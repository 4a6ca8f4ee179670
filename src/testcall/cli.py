"""Run a simulated test call against the Flynn backend from a terminal.

Usage:
    testcall                                   # default greeting, generic intake
    testcall --greeting "Hi, this is Flynn." \\
             --question "What's the issue?" --question "What's your address?"
    testcall --voice flynn_hype --max-seconds 8 --log-level DEBUG

During the call: Enter sends what you said, "m" toggles mute, "r" retries
the microphone, "q" hangs up.
"""

import argparse
import asyncio
import logging
import os
import sys
import threading
from typing import Optional

import aiohttp
from dotenv import load_dotenv

from testcall.backend import BackendClient
from testcall.booking import BookingClient
from testcall.capture import AudioCaptureSession, SoundDeviceMicrophone
from testcall.config import DEFAULT_GREETING, DEFAULT_VOICE_ID, HarnessSettings, ReceptionistConfig, validate_config
from testcall.controller import ConversationController, Notice
from testcall.device import SoundDeviceAudio
from testcall.playback import SoundDeviceSpeaker, SpeechPlayback
from testcall.states import ConversationState
from testcall.synthesis import BackendSynthesizer, FallbackSynthesizer, PipecatSynthesizer, fallback_tts_from_env
from testcall.transcript import ASSISTANT, ConversationTurn
from testcall.transcription import TranscriptionGateway

logger = logging.getLogger(__name__)

REVIEW_LABELS = [
    ("client_name", "Client"),
    ("client_phone", "Phone"),
    ("client_email", "Email"),
    ("service_type", "Service"),
    ("scheduled_date", "Date"),
    ("scheduled_time", "Time"),
    ("location", "Location"),
    ("urgency", "Urgency"),
    ("notes", "Notes"),
]


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Test your AI receptionist with a simulated call")
    parser.add_argument("--greeting", default=DEFAULT_GREETING, help="Greeting spoken at pickup")
    parser.add_argument("--question", action="append", default=[], dest="questions",
                        help="Intake question (repeatable, asked in order)")
    parser.add_argument("--voice", default=DEFAULT_VOICE_ID, help="Voice option id")
    parser.add_argument("--voice-profile", default=None, help="Cloned voice profile id")
    parser.add_argument("--max-seconds", type=float, default=None,
                        help="Capture ceiling per caller turn (default: CAPTURE_MAX_SECONDS or 10)")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"))
    return parser.parse_args(argv)


def _print_turn(turn: ConversationTurn) -> None:
    prefix = "Flynn" if turn.role == ASSISTANT else "You"
    print(f"{prefix}: {turn.text}")


def _print_notice(notice: Notice) -> None:
    print(f"! {notice.value}")


def _print_review(controller: ConversationController) -> None:
    job = controller.extraction
    print("\nTest complete! Flynn captured these details:")
    for attr, label in REVIEW_LABELS:
        value = getattr(job, attr)
        if value:
            print(f"  {label:<9} {value}")
    print(f"  {'Confidence':<9} {job.confidence:.0%}")


def build_controller(
    settings: HarnessSettings,
    client: BackendClient,
    fallback: Optional[PipecatSynthesizer] = None,
) -> ConversationController:
    device = SoundDeviceAudio()

    synthesizer = BackendSynthesizer(client)
    if fallback is not None:
        synthesizer = FallbackSynthesizer(primary=synthesizer, fallback=fallback)

    booking = None
    if settings.jobs_webhook_url:
        booking = BookingClient(
            jobs_url=settings.jobs_webhook_url,
            webhook_secret=settings.jobs_webhook_secret,
        )

    return ConversationController(
        device=device,
        capture=AudioCaptureSession(
            SoundDeviceMicrophone(), device, max_duration=settings.capture_max_seconds
        ),
        playback=SpeechPlayback(synthesizer, SoundDeviceSpeaker(), device),
        transcriber=TranscriptionGateway(client, min_chars=settings.min_transcript_chars),
        client=client,
        settings=settings,
        booking=booking,
        on_turn=_print_turn,
        on_notice=_print_notice,
    )


def _start_stdin_reader(loop: asyncio.AbstractEventLoop) -> asyncio.Queue:
    """Feed stdin lines into a queue from a daemon thread; "" marks EOF."""
    lines: asyncio.Queue = asyncio.Queue()

    def _reader():
        for line in sys.stdin:
            loop.call_soon_threadsafe(lines.put_nowait, line)
        loop.call_soon_threadsafe(lines.put_nowait, "")

    threading.Thread(target=_reader, name="stdin-reader", daemon=True).start()
    return lines


async def run_call(controller: ConversationController, config: ReceptionistConfig) -> int:
    lines = _start_stdin_reader(asyncio.get_running_loop())
    over_states = (ConversationState.IDLE, ConversationState.ENDED, ConversationState.REVIEWING_EXTRACTION)

    await controller.start_call(config)
    print("Enter = send, m = mute, r = retry mic, q = hang up\n")

    while controller.state.is_live:
        next_line = asyncio.ensure_future(lines.get())
        call_over = asyncio.ensure_future(controller.wait_for_state(*over_states))
        done, _ = await asyncio.wait({next_line, call_over}, return_when=asyncio.FIRST_COMPLETED)
        if call_over in done:
            next_line.cancel()
            break
        call_over.cancel()

        line = next_line.result()
        command = line.strip().lower()
        if not line or command == "q":
            await controller.end_call()
        elif command == "m":
            muted = await controller.toggle_mute()
            print("(muted)" if muted else "(listening)")
        elif command == "r":
            controller.resume_listening()
        else:
            await controller.send()

    if controller.state is ConversationState.REVIEWING_EXTRACTION:
        _print_review(controller)
        print("Save this job to your calendar? [y/N] ", end="", flush=True)
        answer = (await lines.get()).strip().lower()
        if answer in ("y", "yes"):
            result = await controller.accept_extraction()
            print("Saved." if result and result.get("success", True) else "Could not save the job.")
        else:
            await controller.dismiss()
        return 0

    if controller.last_notice is Notice.PERMISSION_DENIED:
        return 1
    await controller.wait_for_state(ConversationState.IDLE)
    print("Call ended.")
    return 0


async def _main(args: argparse.Namespace) -> int:
    settings = HarnessSettings.from_env()
    if args.max_seconds is not None:
        settings.capture_max_seconds = args.max_seconds
    config = ReceptionistConfig(
        greeting=args.greeting,
        questions=tuple(args.questions),
        voice_id=args.voice,
        voice_profile_id=args.voice_profile,
    )
    client = BackendClient(settings.api_url, settings.api_token, timeout=settings.request_timeout)
    async with aiohttp.ClientSession() as http_session:
        fallback = fallback_tts_from_env(
            os.getenv("DEEPGRAM_API_KEY"),
            os.getenv("DEEPGRAM_TTS_VOICE", "aura-2-helena-en"),
            http_session,
        )
        controller = build_controller(settings, client, fallback)
        try:
            return await run_call(controller, config)
        finally:
            await controller.dismiss()
            if fallback is not None:
                await fallback.close()
            await client.close()


def main(argv=None) -> None:
    load_dotenv()
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    validate_config()
    sys.exit(asyncio.run(_main(args)))


if __name__ == "__main__":
    main()
