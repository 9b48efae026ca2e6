import pytest

from companion_ai.errors import UpstreamError, ValidationError
from companion_ai.profiles import SCENARIO_PROMPTS, AdviceHandling, Scenario, TherapistRole
from companion_voice.wizard import SetupStep, SetupWizard

from fakes import FakeTranscriber


class FakeProfiles:
    def __init__(self, failing_upload=None):
        self.payloads = []
        self.uploads = []
        self.failing_upload = failing_upload

    def create_therapist(self, payload):
        self.payloads.append(payload)
        return {"id": "new-therapist", "display_name": payload["display_name"]}

    def upload_audio(self, therapist_id, scenario, audio):
        if scenario == self.failing_upload:
            raise UpstreamError("Audio upload failed", service="store")
        self.uploads.append((therapist_id, scenario, audio))
        return f"memory://therapist-audio/{therapist_id}/{scenario}.wav"


def _wizard(*transcripts, profiles=None):
    return SetupWizard(FakeTranscriber(*transcripts), profiles or FakeProfiles())


def _record_all(wizard):
    for _ in SCENARIO_PROMPTS:
        wizard.record(b"RIFF" + wizard.current_prompt.scenario.value.encode())
        wizard.next_prompt()


def test_basic_step_requires_display_name():
    wizard = _wizard()

    with pytest.raises(ValidationError):
        wizard.continue_to_voice()
    wizard.form.display_name = "Dr. Jane Smith"
    wizard.continue_to_voice()

    assert wizard.step is SetupStep.VOICE
    assert wizard.current_prompt.scenario is Scenario.DECISION_MAKING


def test_cannot_advance_without_recording():
    wizard = _wizard()
    wizard.form.display_name = "A"
    wizard.continue_to_voice()

    with pytest.raises(ValidationError):
        wizard.next_prompt()
    assert wizard.prompt_index == 0


def test_prompts_move_back_and_forward():
    wizard = _wizard()
    wizard.form.display_name = "A"
    wizard.continue_to_voice()
    wizard.previous_prompt()
    assert wizard.prompt_index == 0

    wizard.record(b"RIFF")
    wizard.next_prompt()
    assert wizard.current_prompt.scenario is Scenario.ADVICE_SEEKING
    wizard.previous_prompt()
    assert wizard.has_recording()


def test_sixth_sample_opens_guardrails():
    wizard = _wizard()
    wizard.form.display_name = "A"
    wizard.continue_to_voice()

    _record_all(wizard)

    assert wizard.step is SetupStep.GUARDRAILS
    with pytest.raises(ValidationError):
        wizard.record(b"RIFF")


def test_toggle_approach():
    wizard = _wizard()

    wizard.toggle_approach("CBT")
    wizard.toggle_approach("Narrative")
    wizard.toggle_approach("CBT")

    assert wizard.form.approaches == ["Narrative"]
    with pytest.raises(ValidationError):
        wizard.toggle_approach("Astrology")


def test_submit_before_guardrails_is_rejected():
    with pytest.raises(ValidationError):
        _wizard().submit()


def test_submit_uses_placeholder_for_failed_transcriptions():
    texts = ["sample one", UpstreamError("quota", service="transcription"), "three", "", "five", "six"]
    wizard = _wizard(*texts)
    profiles = wizard.profiles
    form = wizard.form
    form.display_name = " Dr. Jane Smith "
    form.role = TherapistRole.COACH
    form.credentials = "  "
    form.advice_handling = AdviceHandling.AVOID_RECOMMENDATIONS
    wizard.continue_to_voice()
    _record_all(wizard)
    wizard.toggle_approach("ACT")

    result = wizard.submit()

    assert result.therapist_id == "new-therapist"
    assert result.placeholders == [Scenario.ADVICE_SEEKING, Scenario.EMOTIONAL_ACTIVATION]
    assert result.used_placeholders
    payload = profiles.payloads[0]
    assert payload["display_name"] == "Dr. Jane Smith"
    assert payload["role"] == "coach"
    assert payload["credentials"] is None
    assert payload["advice_handling"] == "avoid_recommendations"
    assert payload["approaches"] == ["ACT"]
    assert payload["transcripts"]["decision_making"] == "sample one"
    assert payload["transcripts"]["advice_seeking"] == (
        "[Audio recorded for Advice Seeking Situation. Transcription unavailable.]"
    )
    assert len(payload["transcripts"]) == 6
    assert len(result.audio_urls) == 6


def test_submit_uploads_each_sample_after_creating_profile():
    profiles = FakeProfiles(failing_upload="interpersonal")
    wizard = _wizard("a", "b", "c", "d", "e", "f", profiles=profiles)
    wizard.form.display_name = "A"
    wizard.continue_to_voice()
    _record_all(wizard)

    result = wizard.submit()

    assert [u[1] for u in profiles.uploads] == [
        "decision_making",
        "advice_seeking",
        "emotional_activation",
        "self_critiquing",
        "meaning_making",
    ]
    assert profiles.uploads[0] == ("new-therapist", "decision_making", b"RIFFdecision_making")
    assert Scenario.INTERPERSONAL not in result.audio_urls
    assert result.audio_urls[Scenario.MEANING_MAKING].endswith("/new-therapist/meaning_making.wav")
