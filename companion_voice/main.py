import argparse
import asyncio
import sys
from typing import Optional

from companion_ai.errors import CompanionError, NotFoundError
from companion_ai.profiles import APPROACHES, AdviceHandling, TherapistProfile, TherapistRole

from . import monitoring
from .audio import MicrophoneCapture, wav_duration
from .clients import CompanionApi
from .config import ClientSettings
from .controller import ConversationController
from .models import Role, VoiceState
from .playback import Pyttsx3Playback
from .wizard import SetupStep, SetupWizard

logger = monitoring.get_logger("main")

CRISIS_NOTICE = "Important: this is not for emergencies. If you're in crisis, call 988 or go to your nearest ER."


class ConsoleEntry:
    """Manual-entry fallback: ask the user to type what they said."""

    def ask(self, prompt: str) -> Optional[str]:
        try:
            return input(f"\n{prompt}")
        except EOFError:
            return None


async def _ask(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


def _print_state(old: VoiceState, new: VoiceState) -> None:
    if new is VoiceState.PROCESSING:
        print("Thinking...")
    elif new is VoiceState.SPEAKING:
        print("(Speaking...)")


async def talk(therapist_id: str, settings: ClientSettings) -> int:
    api = CompanionApi(settings.api_url, timeout=settings.request_timeout_seconds)
    try:
        info = await asyncio.to_thread(api.get_therapist, therapist_id)
    except NotFoundError:
        print("Could not load therapist profile. Please check the identifier.")
        return 1
    except CompanionError as e:
        print(f"Could not reach the companion service: {e}")
        return 1

    profile = TherapistProfile.from_row(info)
    name = profile.display_name or "Your companion"
    credentials = f" {profile.credentials}" if profile.credentials else ""

    playback = Pyttsx3Playback(settings.speech_rate_factor)
    controller = ConversationController(
        therapist_id,
        capture=MicrophoneCapture(settings.sample_rate, settings.channels),
        transcriber=api,
        conversation=api,
        playback=playback,
        manual_entry=ConsoleEntry(),
        settings=settings,
    )
    controller.add_listener(_print_state)

    print(f"{name}{credentials}: {profile.role_label} Voice Companion")
    print(CRISIS_NOTICE)
    print(f"Press Enter to start talking and Enter again to stop (at least {settings.min_recording_seconds:g}s).")

    try:
        await _loop(controller, name)
    finally:
        await controller.abandon()
        playback.close()
    return 0


async def _loop(controller: ConversationController, name: str) -> None:
    while True:
        cmd = (await _ask("\n[Enter] to talk, 'r' to replay, 'q' to quit: ")).strip().lower()
        if cmd == "q":
            break
        if cmd == "r":
            if not await controller.replay():
                print("(Nothing to replay yet)")
            continue

        seen = len(controller.history)
        if not await controller.start():
            if controller.last_error:
                print(controller.last_error.message)
            continue
        await _ask("Recording... press Enter to stop. ")
        print(f"(recorded {controller.recording_elapsed():.1f}s)")
        await controller.stop()

        for message in controller.history[seen:]:
            speaker = "You" if message.role is Role.USER else name
            print(f"{speaker}: {message.content}")
        if controller.last_error:
            print(f"[!] {controller.last_error.message}")
        logger.debug("turn timings: %s", controller.monitor.report())


async def _record_sample(capture: MicrophoneCapture) -> Optional[bytes]:
    await _ask("Press Enter to start recording. ")
    try:
        await asyncio.to_thread(capture.open)
    except CompanionError as e:
        print(e)
        return None
    try:
        await _ask("Recording... press Enter to stop. ")
    finally:
        audio = await asyncio.to_thread(capture.close)
    duration = wav_duration(audio) or 0.0
    print(f"Recorded {duration:.1f}s")
    return audio


def _choose(prompt: str, options: list[str], default: int = 0) -> int:
    for i, label in enumerate(options, start=1):
        print(f"  {i}. {label}")
    raw = input(f"{prompt} [{default + 1}]: ").strip()
    if raw.isdigit() and 1 <= int(raw) <= len(options):
        return int(raw) - 1
    return default


async def setup(settings: ClientSettings) -> int:
    api = CompanionApi(settings.api_url, timeout=settings.request_timeout_seconds)
    wizard = SetupWizard(api, api)
    capture = MicrophoneCapture(settings.sample_rate, settings.channels)
    form = wizard.form

    print("Therapist Setup: create your AI voice companion.\n")
    while wizard.step is SetupStep.BASIC:
        form.display_name = (await _ask("Display name: ")).strip()
        try:
            wizard.continue_to_voice()
        except CompanionError as e:
            print(e)
    roles = [r.value for r in TherapistRole]
    form.role = TherapistRole(roles[_choose("Role", roles)])
    form.credentials = (await _ask("Credentials (optional, e.g. LCSW): ")).strip()

    while wizard.step is SetupStep.VOICE:
        prompt = wizard.current_prompt
        print(f"\n[{wizard.prompt_index + 1}/6] {prompt.title}\n{prompt.prompt}")
        audio = await _record_sample(capture)
        if audio:
            wizard.record(audio)
        choice = (await _ask("[Enter] next, 'r' re-record, 'b' previous: ")).strip().lower()
        if choice == "b":
            wizard.previous_prompt()
        elif choice != "r":
            try:
                wizard.next_prompt()
            except CompanionError as e:
                print(e)

    handling = list(AdviceHandling)
    form.advice_handling = handling[_choose("How should advice requests be handled", [h.value for h in handling])]
    for i, approach in enumerate(APPROACHES, start=1):
        print(f"  {i}. {approach}")
    for raw in (await _ask("Approaches you use (comma-separated numbers): ")).split(","):
        raw = raw.strip()
        if raw.isdigit() and 1 <= int(raw) <= len(APPROACHES):
            wizard.toggle_approach(APPROACHES[int(raw) - 1])
    form.words_often_used = await _ask("Phrases you often use: ")
    form.words_to_avoid = await _ask("Phrases to avoid: ")

    print("\nTranscribing samples and creating your companion...")
    try:
        result = await asyncio.to_thread(wizard.submit)
    except CompanionError as e:
        print(f"Error submitting setup: {e}. Please try again.")
        return 1
    if result.used_placeholders:
        print("Setup complete! Some transcriptions failed; re-record later for better responses.")
    else:
        print("Setup complete!")
    missing = len(wizard.recordings) - len(result.audio_urls)
    if missing:
        print(f"{missing} voice sample(s) could not be stored; the transcripts were saved.")
    print(f"Your therapist ID: {result.therapist_id}")
    print(f"Clients connect with: companion-voice talk {result.therapist_id}")
    return 0


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Therapist voice companion client")
    p.add_argument("--debug", action="store_true", help="verbose logging")
    p.add_argument("--api-url", help="companion service URL (default: COMPANION_API_URL)")
    sub = p.add_subparsers(dest="command", required=True)
    t = sub.add_parser("talk", help="hold a voice conversation with a therapist's companion")
    t.add_argument("therapist_id")
    sub.add_parser("setup", help="record style samples and create a companion")
    args = p.parse_args(argv)

    monitoring.configure(debug=args.debug)
    settings = ClientSettings.from_env()
    if args.api_url:
        settings.api_url = args.api_url

    try:
        if args.command == "talk":
            return asyncio.run(talk(args.therapist_id, settings))
        return asyncio.run(setup(settings))
    except (KeyboardInterrupt, EOFError):
        print("\n[info] canceled by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
