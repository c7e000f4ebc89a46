"""Semantic marker parsing for raw meeting notes.

Markers are line prefixes the user types while capturing:

- ``> `` their own thoughts / things to say
- ``! `` important points from others
- ``? `` questions / unclear items
- ``[] `` action items (``[x] `` / ``[X] `` for completed ones)
- ``@name: text`` attribution
"""

import re
from dataclasses import dataclass, field

_ATTRIBUTION_RE = re.compile(r"^@(\w+):\s*(.+)$")


@dataclass
class Attribution:
    person: str
    said: str


@dataclass
class ParsedMarkers:
    thoughts: list[str] = field(default_factory=list)
    important: list[str] = field(default_factory=list)
    questions: list[str] = field(default_factory=list)
    actions: list[str] = field(default_factory=list)
    attributions: list[Attribution] = field(default_factory=list)

    @property
    def total(self) -> int:
        return (
            len(self.thoughts)
            + len(self.important)
            + len(self.questions)
            + len(self.actions)
            + len(self.attributions)
        )

    def counts(self) -> dict[str, int]:
        return {
            "thoughts": len(self.thoughts),
            "important": len(self.important),
            "questions": len(self.questions),
            "actions": len(self.actions),
            "attributions": len(self.attributions),
        }


def parse_markers(content: str) -> ParsedMarkers:
    """Collect marker lines from note content. Unmarked lines are ignored."""
    result = ParsedMarkers()
    for line in content.split("\n"):
        trimmed = line.strip()
        if trimmed.startswith("> "):
            result.thoughts.append(trimmed[2:])
        elif trimmed.startswith("! "):
            result.important.append(trimmed[2:])
        elif trimmed.startswith("? "):
            result.questions.append(trimmed[2:])
        elif trimmed.startswith("[] "):
            result.actions.append(trimmed[3:])
        elif trimmed.startswith(("[x] ", "[X] ")):
            result.actions.append(f"[DONE] {trimmed[4:]}")
        elif trimmed.startswith("@"):
            match = _ATTRIBUTION_RE.match(trimmed)
            if match:
                result.attributions.append(Attribution(person=match.group(1), said=match.group(2)))
    return result


def format_marker_summary(markers: ParsedMarkers) -> str:
    """One line per non-empty marker kind, for the system prompt."""
    parts: list[str] = []
    if markers.thoughts:
        parts.append(f"Thoughts ({len(markers.thoughts)}): User's internal thoughts and things to say")
    if markers.important:
        parts.append(f"Important points ({len(markers.important)}): Key items flagged by user")
    if markers.questions:
        parts.append(f"Questions ({len(markers.questions)}): Items needing clarification")
    if markers.actions:
        parts.append(f"Action items ({len(markers.actions)}): Tasks identified during note-taking")
    if markers.attributions:
        people = list(dict.fromkeys(a.person for a in markers.attributions))
        parts.append(f"Attributions: Statements from {', '.join(people)}")
    return "\n".join(parts) if parts else "No semantic markers found in notes."
