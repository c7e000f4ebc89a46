"""Prompt construction for note processing."""

from dataclasses import dataclass
from typing import Literal, get_args

from chronicle.processing.markers import ParsedMarkers, format_marker_summary

ProcessingStyle = Literal["standard", "brief", "detailed", "focused", "structured"]

PROCESSING_STYLES: tuple[str, ...] = get_args(ProcessingStyle)

_STYLE_INSTRUCTIONS: dict[str, str] = {
    "brief": "Keep the summary very brief - just the essentials. TL;DR and action items are most important.",
    "detailed": "Provide a detailed summary with full context. Include all nuances and supporting details.",
    "focused": (
        "This is a 1:1 meeting - focus on relationship building, career development, feedback, "
        "and personal topics. Capture the human elements."
    ),
    "structured": (
        "This is about structured processes (compliance, audit, regulatory). Focus on evidence gaps, "
        "timelines, regulatory requirements, and remediation items."
    ),
}

_SYSTEM_TEMPLATE = """You are processing meeting notes for a busy professional. Transform raw notes into a structured, actionable summary.

## Marker Syntax
The notes use semantic markers that the user added during capture:
- `>` = their thoughts/things to say
- `!` = important points from others
- `?` = questions/unclear items
- `[]` = action items
- `@name:` = attribution (who said what)

## Markers Found
{marker_summary}

## Output Format
Transform the notes into markdown with these sections:

1. **TL;DR** (2-3 sentences) - main topic and key takeaway
2. **Key Points** - important items discussed, grouped thematically
3. **Action Items** - as checklist with owner if identifiable, priority if clear
4. **Open Questions** - items needing follow-up
5. **Raw Notes** - preserve original content at the end under a collapsible section

## Source Attribution
For each key point, action item, and question, include the source line number(s) from the original note where the information was found. Line numbers are 1-based.

Be concise. Prioritize actionability. Preserve the user's voice and key details."""


@dataclass
class PromptParts:
    system: str
    user: str

    def to_messages(self) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": self.system},
            {"role": "user", "content": self.user},
        ]


def build_prompt(
    raw_notes: str,
    markers: ParsedMarkers,
    style: str = "standard",
    duration_minutes: int | None = None,
    focus: str | None = None,
) -> PromptParts:
    """
    Build the system and user prompt for processing one note.

    Args:
        raw_notes: The note content as captured.
        markers: Result of ``parse_markers(raw_notes)``.
        style: One of ``PROCESSING_STYLES``; ``standard`` adds no extra instruction.
        duration_minutes: Meeting length, mentioned in the prompt when known.
        focus: Optional area to emphasise.
    """
    if style not in PROCESSING_STYLES:
        raise ValueError(f"Unknown processing style '{style}'. Expected one of: {', '.join(PROCESSING_STYLES)}")
    system = _SYSTEM_TEMPLATE.format(marker_summary=format_marker_summary(markers))

    user = "Process these notes"
    if duration_minutes:
        user += f" (duration: {duration_minutes} minutes)"
    user += f":\n\n{raw_notes}"
    instruction = _STYLE_INSTRUCTIONS.get(style)
    if instruction:
        user += f"\n\n{instruction}"
    if focus:
        user += f"\n\nFocus especially on: {focus}"
    return PromptParts(system=system, user=user)
