"""
Tests for the voice conversation state machine.

Uses fake capture/transcription/completion/playback objects; no microphone,
network or speech engine needed. Async operations are driven with asyncio.run.
"""

import asyncio
import threading

import pytest

from companion_ai.errors import MicrophonePermissionError, NotFoundError, UpstreamError, ValidationError
from companion_voice.config import ClientSettings
from companion_voice.controller import ConversationController
from companion_voice.models import ErrorCause, Role, VoiceState

from fakes import (
    FakeCapture,
    FakeClock,
    FakeConversation,
    FakeEntry,
    FakePlayback,
    FakeTranscriber,
    InterruptiblePlayback,
    RaisingEntry,
)


def build(transcriber=None, conversation=None, *, capture=None, playback=None, entry=None, settings=None):
    clock = FakeClock()
    controller = ConversationController(
        "therapist-1",
        capture=capture or FakeCapture(),
        transcriber=transcriber or FakeTranscriber("hello"),
        conversation=conversation or FakeConversation("hi there"),
        playback=playback or FakePlayback(),
        manual_entry=entry,
        settings=settings or ClientSettings(min_recording_seconds=0.5, request_timeout_seconds=5),
        clock=clock,
    )
    states = []
    controller.add_listener(lambda old, new: states.append(new))
    return controller, clock, states


async def talk(controller, clock, seconds=1.0):
    started = await controller.start()
    clock.advance(seconds)
    if not started:
        return False
    return await controller.stop()


def test_successful_turns_alternate_user_and_assistant():
    transcriber = FakeTranscriber("I keep second-guessing myself", "It happened again today")
    conversation = FakeConversation("That sounds exhausting.", "What was different today?")
    playback = FakePlayback()
    controller, clock, states = build(transcriber, conversation, playback=playback)

    async def scenario():
        assert await talk(controller, clock)
        assert await talk(controller, clock)

    asyncio.run(scenario())

    history = controller.history
    assert [m.role for m in history] == [Role.USER, Role.ASSISTANT, Role.USER, Role.ASSISTANT]
    assert [m.content for m in history] == [
        "I keep second-guessing myself",
        "That sounds exhausting.",
        "It happened again today",
        "What was different today?",
    ]
    assert playback.spoken == ["That sounds exhausting.", "What was different today?"]
    assert states[:4] == [VoiceState.RECORDING, VoiceState.PROCESSING, VoiceState.SPEAKING, VoiceState.IDLE]
    assert controller.state is VoiceState.IDLE
    assert controller.last_error is None


def test_completion_receives_prior_history_and_therapist_id():
    conversation = FakeConversation("first reply", "second reply")
    controller, clock, _ = build(FakeTranscriber("one", "two"), conversation)

    async def scenario():
        await talk(controller, clock)
        await talk(controller, clock)

    asyncio.run(scenario())

    first, second = conversation.calls
    assert first == ("therapist-1", "one", ())
    therapist_id, message, prior = second
    assert therapist_id == "therapist-1"
    assert message == "two"
    assert [(m.role, m.content) for m in prior] == [(Role.USER, "one"), (Role.ASSISTANT, "first reply")]


def test_too_short_recording_is_discarded():
    capture = FakeCapture()
    transcriber = FakeTranscriber("never used")
    controller, clock, states = build(transcriber, capture=capture)

    result = asyncio.run(talk(controller, clock, seconds=0.2))

    assert result is False
    assert controller.history == ()
    assert controller.state is VoiceState.IDLE
    assert controller.last_error.cause is ErrorCause.TOO_SHORT
    assert "0.5" in controller.last_error.message
    assert capture.discarded == 1
    assert capture.closed == 0
    assert not capture.is_open
    assert transcriber.calls == []
    assert states[-2:] == [VoiceState.ERROR, VoiceState.IDLE]


def test_minimum_duration_is_configurable():
    settings = ClientSettings(min_recording_seconds=2.0)
    controller, clock, _ = build(settings=settings)

    assert asyncio.run(talk(controller, clock, seconds=1.5)) is False
    assert controller.last_error.cause is ErrorCause.TOO_SHORT


def test_microphone_permission_denied():
    capture = FakeCapture(open_error=MicrophonePermissionError("Could not access microphone. Please check permissions."))
    controller, clock, states = build(capture=capture)

    started = asyncio.run(controller.start())

    assert started is False
    assert controller.state is VoiceState.IDLE
    assert controller.recording is None
    assert controller.last_error.cause is ErrorCause.PERMISSION
    assert states == [VoiceState.RECORDING, VoiceState.ERROR, VoiceState.IDLE]


def test_transcription_failure_then_declined_entry_leaves_history_unchanged():
    transcriber = FakeTranscriber(UpstreamError("quota exceeded", service="transcription"))
    conversation = FakeConversation("unused")
    entry = FakeEntry(None)
    controller, clock, _ = build(transcriber, conversation, entry=entry)

    assert asyncio.run(talk(controller, clock)) is False

    assert controller.history == ()
    assert len(entry.prompts) == 1
    assert conversation.calls == []
    assert controller.last_error.cause is ErrorCause.TRANSCRIPTION
    assert controller.state is VoiceState.IDLE


def test_manual_entry_substitutes_for_unavailable_transcription():
    transcriber = FakeTranscriber(UpstreamError("quota exceeded", service="transcription"))
    conversation = FakeConversation("Thanks for typing that out.")
    controller, clock, _ = build(transcriber, conversation, entry=FakeEntry("  I had a rough day  "))

    assert asyncio.run(talk(controller, clock)) is True

    assert [(m.role, m.content) for m in controller.history] == [
        (Role.USER, "I had a rough day"),
        (Role.ASSISTANT, "Thanks for typing that out."),
    ]


def test_rejected_upload_does_not_offer_manual_entry():
    entry = FakeEntry("typed")
    controller, clock, _ = build(FakeTranscriber(ValidationError("No audio file provided")), entry=entry)

    assert asyncio.run(talk(controller, clock)) is False
    assert entry.prompts == []
    assert controller.last_error.cause is ErrorCause.TRANSCRIPTION


def test_empty_transcript_appends_nothing():
    controller, clock, _ = build(FakeTranscriber("   "))

    assert asyncio.run(talk(controller, clock)) is False
    assert controller.history == ()
    assert controller.last_error.cause is ErrorCause.TRANSCRIPTION


def test_completion_failure_keeps_only_the_user_message():
    playback = FakePlayback()
    conversation = FakeConversation(UpstreamError("model overloaded", service="completion"))
    controller, clock, _ = build(FakeTranscriber("hello"), conversation, playback=playback)

    assert asyncio.run(talk(controller, clock)) is False

    assert [(m.role, m.content) for m in controller.history] == [(Role.USER, "hello")]
    assert controller.last_error.cause is ErrorCause.COMPLETION
    assert playback.spoken == []
    assert controller.state is VoiceState.IDLE


def test_unknown_therapist_reports_profile_message():
    controller, clock, _ = build(conversation=FakeConversation(NotFoundError("Therapist not found")))

    asyncio.run(talk(controller, clock))

    assert controller.last_error.cause is ErrorCause.COMPLETION
    assert "therapist profile" in controller.last_error.message


def test_replay_without_assistant_message_is_noop():
    playback = FakePlayback()
    controller, _, states = build(playback=playback)

    assert asyncio.run(controller.replay()) is False
    assert playback.spoken == []
    assert playback.cancels == 0
    assert states == []


def test_replay_speaks_latest_assistant_message():
    playback = FakePlayback()
    controller, clock, _ = build(
        FakeTranscriber("one", "two"), FakeConversation("first", "second"), playback=playback
    )

    async def scenario():
        await talk(controller, clock)
        await talk(controller, clock)
        return await controller.replay()

    assert asyncio.run(scenario()) is True
    assert playback.spoken == ["first", "second", "second"]
    assert controller.state is VoiceState.IDLE


def test_speech_errors_return_to_idle_silently():
    controller, clock, _ = build(playback=FakePlayback(error=RuntimeError("no audio device")))

    assert asyncio.run(talk(controller, clock)) is True
    assert controller.state is VoiceState.IDLE
    assert controller.last_error is None
    assert len(controller.history) == 2


def test_cannot_start_while_processing():
    gate = threading.Event()
    capture = FakeCapture()
    controller, clock, _ = build(FakeTranscriber("hello", gate=gate), capture=capture)

    async def scenario():
        await controller.start()
        clock.advance(1.0)
        task = asyncio.create_task(controller.stop())
        while controller.state is not VoiceState.PROCESSING:
            await asyncio.sleep(0.01)
        blocked = await controller.start()
        gate.set()
        return blocked, await task

    blocked, finished = asyncio.run(scenario())

    assert blocked is False
    assert finished is True
    assert capture.opened == 1


def test_second_start_while_recording_is_ignored():
    capture = FakeCapture()
    controller, _, _ = build(capture=capture)

    async def scenario():
        first = await controller.start()
        second = await controller.start()
        return first, second

    assert asyncio.run(scenario()) == (True, False)
    assert capture.opened == 1
    assert controller.state is VoiceState.RECORDING


def test_abandoned_turn_result_is_not_applied():
    gate = threading.Event()
    conversation = FakeConversation("unused")
    controller, clock, _ = build(FakeTranscriber("late transcript", gate=gate), conversation)

    async def scenario():
        await controller.start()
        clock.advance(1.0)
        task = asyncio.create_task(controller.stop())
        while controller.state is not VoiceState.PROCESSING:
            await asyncio.sleep(0.01)
        await controller.abandon()
        gate.set()
        return await task

    assert asyncio.run(scenario()) is False
    assert controller.history == ()
    assert conversation.calls == []
    assert controller.state is VoiceState.IDLE
    assert controller.last_error is None


def test_abandon_while_recording_releases_microphone():
    capture = FakeCapture()
    controller, _, _ = build(capture=capture)

    async def scenario():
        await controller.start()
        await controller.abandon()

    asyncio.run(scenario())

    assert capture.discarded == 1
    assert not capture.is_open
    assert controller.state is VoiceState.IDLE
    assert controller.recording is None


def test_slow_transcription_times_out_to_fallback():
    gate = threading.Event()
    entry = FakeEntry(None)
    settings = ClientSettings(min_recording_seconds=0.5, request_timeout_seconds=0.05)
    controller, clock, _ = build(FakeTranscriber("too late", gate=gate), entry=entry, settings=settings)

    async def scenario():
        try:
            return await talk(controller, clock)
        finally:
            # let the abandoned worker thread finish before the loop shuts down
            gate.set()

    assert asyncio.run(scenario()) is False
    assert len(entry.prompts) == 1
    assert controller.last_error.cause is ErrorCause.TRANSCRIPTION
    assert isinstance(controller.last_error.error, UpstreamError)


def test_stage_timings_are_recorded():
    controller, clock, _ = build()

    asyncio.run(talk(controller, clock))

    report = controller.monitor.report()
    assert set(report) == {"capture", "transcribe", "complete", "speak"}
    assert report["capture"]["duration"] == pytest.approx(1.0)
    assert all(stage["success"] for stage in report.values())


def test_therapist_id_is_required():
    with pytest.raises(ValueError):
        ConversationController(
            "",
            capture=FakeCapture(),
            transcriber=FakeTranscriber(),
            conversation=FakeConversation(),
            playback=FakePlayback(),
        )


def test_failing_manual_entry_returns_to_idle():
    transcriber = FakeTranscriber(UpstreamError("quota exceeded", service="transcription"), "hello")
    controller, clock, _ = build(transcriber, FakeConversation("hi there"), entry=RaisingEntry())

    async def scenario():
        first = await talk(controller, clock)
        state = controller.state
        second = await talk(controller, clock)
        return first, state, second

    first, state, second = asyncio.run(scenario())

    assert first is False
    assert state is VoiceState.IDLE
    assert second is True
    assert [m.role for m in controller.history] == [Role.USER, Role.ASSISTANT]


async def _until_speaking(playback):
    while not playback.active:
        await asyncio.sleep(0.01)


def test_replay_interrupts_and_only_latest_utterance_ends_speaking():
    playback = InterruptiblePlayback()
    controller, clock, states = build(playback=playback)

    async def scenario():
        turn = asyncio.create_task(talk(controller, clock))
        await _until_speaking(playback)
        blocked = await controller.start()
        cancels = playback.cancels
        replay = asyncio.create_task(controller.replay())
        turn_result = await turn
        mid_state = controller.state
        cancelled = playback.cancels - cancels
        playback.release.set()
        return blocked, turn_result, mid_state, cancelled, await replay

    blocked, turn_result, mid_state, cancelled, replayed = asyncio.run(scenario())

    assert blocked is False
    assert turn_result is True
    assert mid_state is VoiceState.SPEAKING
    assert cancelled == 1
    assert replayed is True
    assert playback.spoken == ["hi there", "hi there"]
    assert controller.state is VoiceState.IDLE
    assert states.count(VoiceState.IDLE) == 1


def test_abandon_survives_failing_cancel():
    playback = InterruptiblePlayback(cancel_error=RuntimeError("driver gone"))
    controller, clock, _ = build(playback=playback)

    async def scenario():
        turn = asyncio.create_task(talk(controller, clock))
        await _until_speaking(playback)
        await controller.abandon()
        state = controller.state
        playback.interrupted.set()
        await turn
        return state

    assert asyncio.run(scenario()) is VoiceState.IDLE
    assert controller.state is VoiceState.IDLE


def test_recording_elapsed_tracks_open_capture():
    controller, clock, _ = build()

    async def scenario():
        await controller.start()
        clock.advance(0.8)
        elapsed = controller.recording_elapsed()
        await controller.abandon()
        return elapsed

    assert asyncio.run(scenario()) == pytest.approx(0.8)
    assert controller.recording_elapsed() == 0.0
