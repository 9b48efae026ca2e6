"""Therapist profile model and the row mapping used by the external store.

The profile is owned by the store. The service reads it once per /chat call
to build the system prompt; it is never mutated there.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class TherapistRole(str, Enum):
    THERAPIST = "therapist"
    COACH = "coach"


class AdviceHandling(str, Enum):
    REFLECT_AND_ASK = "reflect_and_ask"
    OFFER_PERSPECTIVE = "offer_perspective"
    AVOID_RECOMMENDATIONS = "avoid_recommendations"


class Scenario(str, Enum):
    DECISION_MAKING = "decision_making"
    ADVICE_SEEKING = "advice_seeking"
    INTERPERSONAL = "interpersonal"
    EMOTIONAL_ACTIVATION = "emotional_activation"
    SELF_CRITIQUING = "self_critiquing"
    MEANING_MAKING = "meaning_making"


APPROACHES = (
    "CBT",
    "ACT",
    "Mindfulness-based",
    "Psychodynamic",
    "Somatic",
    "Values-based",
    "Solution-focused",
    "Narrative",
)


@dataclass(frozen=True)
class ScenarioPrompt:
    scenario: Scenario
    title: str
    prompt: str


SCENARIO_PROMPTS: tuple[ScenarioPrompt, ...] = (
    ScenarioPrompt(
        Scenario.DECISION_MAKING,
        "Decision Making Situation",
        "Give me an example of how you speak directly to a client who is confused about making a decision. "
        "Walk me through how you guide them through it, speaking as if the client is in front of you.",
    ),
    ScenarioPrompt(
        Scenario.ADVICE_SEEKING,
        "Advice Seeking Situation",
        "Give me an example of how you speak directly to a client who is asking you what they should do and "
        "wants a clear answer. Walk me through how you respond, speaking as if the client is in front of you.",
    ),
    ScenarioPrompt(
        Scenario.INTERPERSONAL,
        "Interpersonal Situation",
        "Give me an example of how you speak directly to a client who is feeling frustrated or annoyed with "
        "someone in their life. Walk me through how you help them think about the situation, speaking as if "
        "the client is in front of you.",
    ),
    ScenarioPrompt(
        Scenario.EMOTIONAL_ACTIVATION,
        "Emotional Activation Situation",
        "Give me an example of how you speak directly to a client who is feeling emotionally activated and "
        "having trouble settling down. Walk me through how you help them regulate and ground themselves, "
        "speaking as if the client is in front of you.",
    ),
    ScenarioPrompt(
        Scenario.SELF_CRITIQUING,
        "Self Critiquing Situation",
        "Give me an example of how you speak directly to a client who is being very hard on themselves and "
        "stuck in self-critical thoughts. Walk me through how you guide them, speaking as if the client is "
        "in front of you.",
    ),
    ScenarioPrompt(
        Scenario.MEANING_MAKING,
        "Meaning Making/Perspective Situation",
        "Give me an example of how you speak directly to a client who is trying to make sense of a situation "
        "and what it means for them or their life. Walk me through how you help them gain perspective, "
        "speaking as if the client is in front of you.",
    ),
)


def _parse_enum(enum_cls, value, default):
    try:
        return enum_cls(value)
    except ValueError:
        return default


@dataclass
class TherapistProfile:
    display_name: str
    role: TherapistRole = TherapistRole.THERAPIST
    credentials: Optional[str] = None
    advice_handling: AdviceHandling = AdviceHandling.REFLECT_AND_ASK
    approaches: list[str] = field(default_factory=list)
    transcripts: dict[Scenario, str] = field(default_factory=dict)
    words_often_used: str = ""
    words_to_avoid: str = ""
    audio_urls: dict[Scenario, str] = field(default_factory=dict)
    id: Optional[str] = None

    def transcript(self, scenario: Scenario) -> str:
        return self.transcripts.get(scenario, "")

    @property
    def role_label(self) -> str:
        return "Therapist" if self.role == TherapistRole.THERAPIST else "Coach"

    def public_fields(self) -> dict[str, Any]:
        """The subset a client page is allowed to see."""
        return {
            "id": self.id,
            "display_name": self.display_name,
            "role": self.role.value,
            "credentials": self.credentials,
        }

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {
            "display_name": self.display_name,
            "role": self.role.value,
            "credentials": self.credentials,
            "advice_handling": self.advice_handling.value,
            "approaches": list(self.approaches),
            "words_often_used": self.words_often_used,
            "words_to_avoid": self.words_to_avoid,
        }
        for scenario in Scenario:
            if scenario in self.transcripts:
                row[f"transcript_{scenario.value}"] = self.transcripts[scenario]
            if scenario in self.audio_urls:
                row[f"voice_{scenario.value}"] = self.audio_urls[scenario]
        if self.id is not None:
            row["id"] = self.id
        return row

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "TherapistProfile":
        transcripts = {}
        audio_urls = {}
        for scenario in Scenario:
            text = row.get(f"transcript_{scenario.value}")
            if text:
                transcripts[scenario] = text
            url = row.get(f"voice_{scenario.value}")
            if url:
                audio_urls[scenario] = url
        return cls(
            id=str(row["id"]) if row.get("id") is not None else None,
            display_name=row.get("display_name") or "",
            role=_parse_enum(TherapistRole, row.get("role"), TherapistRole.THERAPIST),
            credentials=row.get("credentials") or None,
            advice_handling=_parse_enum(
                AdviceHandling, row.get("advice_handling"), AdviceHandling.REFLECT_AND_ASK
            ),
            approaches=list(row.get("approaches") or []),
            transcripts=transcripts,
            words_often_used=row.get("words_often_used") or "",
            words_to_avoid=row.get("words_to_avoid") or "",
            audio_urls=audio_urls,
        )
