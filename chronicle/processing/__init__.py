"""Note processing helpers: marker parsing and prompt construction."""

from chronicle.processing.markers import Attribution, ParsedMarkers, format_marker_summary, parse_markers
from chronicle.processing.prompt import PROCESSING_STYLES, ProcessingStyle, PromptParts, build_prompt

__all__ = [
    "Attribution",
    "ParsedMarkers",
    "format_marker_summary",
    "parse_markers",
    "PROCESSING_STYLES",
    "ProcessingStyle",
    "PromptParts",
    "build_prompt",
]
