"""
Therapist setup flow: basic info -> six voice samples -> guardrails -> submit.

Steps are a closed enum and only move forward when the current step is
complete. Submission transcribes each sample, creates the profile through the service
and then uploads the samples themselves. A sample whose transcription fails
is stored with a placeholder; one whose upload fails is left without a URL.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol

from companion_ai.errors import CompanionError, ValidationError
from companion_ai.profiles import (
    APPROACHES,
    SCENARIO_PROMPTS,
    AdviceHandling,
    Scenario,
    ScenarioPrompt,
    TherapistRole,
)

from . import monitoring
from .interfaces import TranscriptionClient

logger = monitoring.get_logger("wizard")


class SetupStep(str, Enum):
    BASIC = "basic"
    VOICE = "voice"
    GUARDRAILS = "guardrails"


class ProfileClient(Protocol):
    def create_therapist(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    def upload_audio(self, therapist_id: str, scenario: str, audio: bytes) -> str: ...


@dataclass
class SetupForm:
    display_name: str = ""
    role: TherapistRole = TherapistRole.THERAPIST
    credentials: str = ""
    advice_handling: AdviceHandling = AdviceHandling.REFLECT_AND_ASK
    approaches: list[str] = field(default_factory=list)
    words_often_used: str = ""
    words_to_avoid: str = ""


@dataclass
class SetupResult:
    therapist_id: str
    placeholders: list[Scenario] = field(default_factory=list)
    audio_urls: dict[Scenario, str] = field(default_factory=dict)

    @property
    def used_placeholders(self) -> bool:
        return bool(self.placeholders)


def placeholder_transcript(prompt: ScenarioPrompt) -> str:
    return f"[Audio recorded for {prompt.title}. Transcription unavailable.]"


class SetupWizard:
    def __init__(self, transcriber: TranscriptionClient, profiles: ProfileClient):
        self.transcriber = transcriber
        self.profiles = profiles
        self.form = SetupForm()
        self.step = SetupStep.BASIC
        self.prompt_index = 0
        self.recordings: dict[Scenario, bytes] = {}

    @property
    def current_prompt(self) -> ScenarioPrompt:
        return SCENARIO_PROMPTS[self.prompt_index]

    def _require(self, step: SetupStep) -> None:
        if self.step is not step:
            raise ValidationError(f"not available during the {self.step.value} step")

    def continue_to_voice(self) -> None:
        self._require(SetupStep.BASIC)
        if not self.form.display_name.strip():
            raise ValidationError("Display name is required")
        self.step = SetupStep.VOICE

    def record(self, audio: bytes) -> None:
        self._require(SetupStep.VOICE)
        if not audio:
            raise ValidationError("No audio file provided")
        self.recordings[self.current_prompt.scenario] = audio

    def has_recording(self, scenario: Optional[Scenario] = None) -> bool:
        return (scenario or self.current_prompt.scenario) in self.recordings

    def next_prompt(self) -> None:
        self._require(SetupStep.VOICE)
        if not self.has_recording():
            raise ValidationError(f"Record the {self.current_prompt.title.lower()} first")
        if self.prompt_index < len(SCENARIO_PROMPTS) - 1:
            self.prompt_index += 1
        else:
            self.step = SetupStep.GUARDRAILS

    def previous_prompt(self) -> None:
        self._require(SetupStep.VOICE)
        if self.prompt_index > 0:
            self.prompt_index -= 1

    def toggle_approach(self, approach: str) -> None:
        if approach not in APPROACHES:
            raise ValidationError(f"Unknown approach: {approach}")
        if approach in self.form.approaches:
            self.form.approaches.remove(approach)
        else:
            self.form.approaches.append(approach)

    def _transcripts(self) -> tuple[dict[str, str], list[Scenario]]:
        transcripts: dict[str, str] = {}
        placeholders: list[Scenario] = []
        for prompt in SCENARIO_PROMPTS:
            audio = self.recordings.get(prompt.scenario)
            if audio is None:
                continue
            try:
                text = (self.transcriber.transcribe(audio) or "").strip()
            except CompanionError as e:
                logger.warning("Transcription failed for %s, using placeholder: %s", prompt.scenario.value, e)
                text = ""
            if not text:
                text = placeholder_transcript(prompt)
                placeholders.append(prompt.scenario)
            transcripts[prompt.scenario.value] = text
        return transcripts, placeholders

    def _upload(self, therapist_id: str) -> dict[Scenario, str]:
        urls: dict[Scenario, str] = {}
        for prompt in SCENARIO_PROMPTS:
            audio = self.recordings.get(prompt.scenario)
            if audio is None:
                continue
            try:
                urls[prompt.scenario] = self.profiles.upload_audio(therapist_id, prompt.scenario.value, audio)
            except CompanionError as e:
                logger.warning("Upload failed for %s: %s", prompt.scenario.value, e)
        return urls

    def submit(self) -> SetupResult:
        self._require(SetupStep.GUARDRAILS)
        transcripts, placeholders = self._transcripts()
        form = self.form
        payload = {
            "display_name": form.display_name.strip(),
            "role": form.role.value,
            "credentials": form.credentials.strip() or None,
            "advice_handling": form.advice_handling.value,
            "approaches": list(form.approaches),
            "words_often_used": form.words_often_used.strip(),
            "words_to_avoid": form.words_to_avoid.strip(),
            "transcripts": transcripts,
        }
        created = self.profiles.create_therapist(payload)
        therapist_id = str(created["id"])
        audio_urls = self._upload(therapist_id)
        logger.info(
            "created therapist %s (%d placeholder transcripts, %d/%d samples stored)",
            therapist_id,
            len(placeholders),
            len(audio_urls),
            len(self.recordings),
        )
        return SetupResult(therapist_id=therapist_id, placeholders=placeholders, audio_urls=audio_urls)
