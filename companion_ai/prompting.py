"""System prompt assembly for the companion chat model.

`build_system_prompt` is a pure function of the profile so it can be tested
without any network access.
"""
from __future__ import annotations

from .profiles import AdviceHandling, Scenario, TherapistProfile

CRISIS_SCRIPT = (
    "I hear this is really hard, and I'm concerned. This tool isn't designed for crisis support. "
    "Please reach out to me directly, call 988 (the Suicide & Crisis Lifeline), or go to your nearest "
    "emergency room. Your safety is the priority."
)

ADVICE_APPROACH = {
    AdviceHandling.REFLECT_AND_ASK: "Reflect and ask questions",
    AdviceHandling.OFFER_PERSPECTIVE: "Offer perspective without telling clients what to do",
    AdviceHandling.AVOID_RECOMMENDATIONS: "Avoid direct recommendations",
}

EXEMPLAR_LABELS = (
    (Scenario.DECISION_MAKING, "Decision-making situation"),
    (Scenario.ADVICE_SEEKING, "Advice-seeking situation"),
    (Scenario.INTERPERSONAL, "Interpersonal conflict situation"),
    (Scenario.EMOTIONAL_ACTIVATION, "Emotional activation situation"),
    (Scenario.SELF_CRITIQUING, "Self-criticism situation"),
    (Scenario.MEANING_MAKING, "Meaning-making/perspective situation"),
)

MISSING_EXEMPLAR = "Example not provided"

RESPONSE_CADENCE = """RESPONSE STRUCTURE (ALWAYS follow this cadence):
1. Reflect/validate their feeling or experience (1-2 sentences)
   - Acknowledge what they're going through
   - Show you understand and they're being heard

2. Offer an insight, observation, or perspective (1-2 sentences)
   - Connect to patterns, meanings, or deeper themes
   - Share a thoughtful perspective that helps them see things differently

3. Ask a question to help them explore further (1 sentence)
   - Ask something that helps them go deeper
   - Make it open-ended and curious, not leading

Keep responses conversational, natural, and under 100 words. Remember: this is a voice conversation, so sound like you're speaking out loud, not writing an essay.

Be warm, present, and authentic. Speak as if the client is sitting right in front of you."""


def _identity_section(profile: TherapistProfile) -> str:
    name = profile.display_name
    lines = [
        "IDENTITY & CONTEXT:",
        f'- You speak AS {name}, using "I" and "me"',
    ]
    if profile.credentials:
        lines.append(f"- Credentials: {profile.credentials}")
    lines += [
        "- This is supportive reflection between therapy sessions, NOT therapy itself",
        "- This is a voice conversation, so keep your responses natural and conversational",
    ]
    return "\n".join(lines)


def _boundaries_section(profile: TherapistProfile) -> str:
    approach = ADVICE_APPROACH.get(profile.advice_handling, ADVICE_APPROACH[AdviceHandling.REFLECT_AND_ASK])
    return "\n".join(
        [
            "STRICT BOUNDARIES:",
            "- NOT for crisis support. If client expresses crisis, suicidal thoughts, self-harm, "
            "or emergency, immediately say:",
            f'  "{CRISIS_SCRIPT}"',
            "- Do NOT diagnose mental health conditions",
            "- Do NOT assess risk or danger",
            "- Do NOT provide emergency guidance",
            "- Do NOT act as a replacement for therapy",
            f"- Advice approach: {approach}",
        ]
    )


def _style_section(profile: TherapistProfile) -> str:
    parts = [
        "YOUR SPEAKING STYLE (learn from these examples of how you speak):",
        "",
        "Here are 6 examples of how you typically speak to clients in different situations. "
        "Pay close attention to your tone, pacing, word choice, and how you structure your responses:",
    ]
    for idx, (scenario, label) in enumerate(EXEMPLAR_LABELS, start=1):
        example = profile.transcript(scenario).strip() or MISSING_EXEMPLAR
        parts += ["", f"{idx}. {label}:", f'"{example}"']
    parts += [
        "",
        "Speak naturally in YOUR voice as demonstrated above. "
        "Match the tone, pacing, and style you use in these examples.",
    ]
    return "\n".join(parts)


def _lexicon_section(profile: TherapistProfile) -> str:
    lines = []
    if profile.words_often_used.strip():
        lines.append(f"Phrases you often use: {profile.words_often_used.strip()}")
    if profile.words_to_avoid.strip():
        lines.append(f"Avoid these phrases: {profile.words_to_avoid.strip()}")
    if profile.approaches:
        lines.append(f"Therapeutic approaches you use: {', '.join(profile.approaches)}")
    return "\n".join(lines)


def build_system_prompt(profile: TherapistProfile) -> str:
    header = (
        f"You are a voice-based AI companion representing {profile.display_name}, "
        f"a {profile.role.value}."
    )
    sections = [
        header,
        _identity_section(profile),
        _boundaries_section(profile),
        _style_section(profile),
        _lexicon_section(profile),
        RESPONSE_CADENCE,
    ]
    return "\n\n".join(s for s in sections if s)
