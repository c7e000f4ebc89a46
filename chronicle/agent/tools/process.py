"""process_meeting: turn raw meeting notes into a structured summary."""

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger

from chronicle.agent.tools.base import Tool
from chronicle.agent.tools.guard import ResolvedPath
from chronicle.bridge.connection import BridgeConnection
from chronicle.bridge.protocol import PushEvent
from chronicle.config.schema import Config
from chronicle.processing import PROCESSING_STYLES, build_prompt, parse_markers
from chronicle.providers.base import LLMProvider
from chronicle.utils.exceptions import ProviderError, ToolError, tool_error_handler

RAW_DIR = ".raw"
META_DIR = ".meta"
SUMMARY_PUSH_CHARS = 500

_TITLE_RE = re.compile(r"^#\s+(.+)$", re.MULTILINE)


def note_basename(note: Path) -> str:
    """File name without a trailing ``.md``."""
    name = note.name
    return name[:-3] if name.endswith(".md") else name


def extract_title(content: str, fallback: str) -> str:
    match = _TITLE_RE.search(content)
    return match.group(1).strip() if match else fallback


def save_raw_backup(workspace: Path, base: str, content: str) -> Path:
    """Write ``.raw/<base>.raw.md`` unless it already exists; the first capture is kept forever."""
    raw_path = workspace / RAW_DIR / f"{base}.raw.md"
    if not raw_path.exists():
        raw_path.parent.mkdir(parents=True, exist_ok=True)
        raw_path.write_text(content, encoding="utf-8")
        logger.debug(f"Saved raw backup to {raw_path}")
    return raw_path


def merge_processing_meta(workspace: Path, base: str, processing: dict[str, Any]) -> Path:
    """Replace the ``processing`` key of ``.meta/<base>.json``, keeping every other key."""
    meta_path = workspace / META_DIR / f"{base}.json"
    meta_path.parent.mkdir(parents=True, exist_ok=True)
    existing: dict[str, Any] = {}
    if meta_path.exists():
        try:
            loaded = json.loads(meta_path.read_text(encoding="utf-8"))
            if isinstance(loaded, dict):
                existing = loaded
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Ignoring unreadable metadata file {meta_path}: {e}")
    existing["processing"] = processing
    meta_path.write_text(json.dumps(existing, indent=2, ensure_ascii=False), encoding="utf-8")
    return meta_path


class ProcessMeetingTool(Tool):
    """Summarise a note with the configured model and write the result back."""

    path_params = ("path",)
    read_only = False

    def __init__(self, connection: BridgeConnection, provider: LLMProvider, config: Config):
        self.connection = connection
        self.provider = provider
        self.config = config

    @property
    def name(self) -> str:
        return "process_meeting"

    @property
    def description(self) -> str:
        return (
            "Process raw meeting notes into a structured summary (TL;DR, key points, action items, "
            "open questions). The original is kept under .raw/ and the note is overwritten."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Path to note file relative to workspace, or 'current' for the active file in Chronicle",
                },
                "style": {
                    "type": "string",
                    "enum": list(PROCESSING_STYLES),
                    "description": (
                        "Processing style: standard (balanced), brief (essentials only), detailed (full context), "
                        "focused (1:1 meetings), structured (compliance/audit)"
                    ),
                },
                "focus": {
                    "type": "string",
                    "description": "Optional specific aspect to emphasize (e.g., 'action items only', 'timeline gaps')",
                },
            },
            "required": ["path"],
        }

    @tool_error_handler("Failed to process meeting notes")
    async def execute(
        self,
        path: ResolvedPath,
        style: str | None = None,
        focus: str | None = None,
        **kwargs: Any,
    ) -> str:
        style = style or self.config.default_style
        content = self._read_content(path)

        markers = parse_markers(content)
        prompt = build_prompt(content, markers, style, focus=focus)

        model = self.config.model
        response = await self.provider.chat(prompt.to_messages(), model=model, max_tokens=self.config.max_tokens)
        if response.is_error:
            raise ProviderError(response.content or "Completion failed", model=model, is_retryable=response.retryable)
        processed = response.content or ""
        if not processed.strip():
            raise ProviderError("Model returned an empty completion", model=model)

        base = note_basename(path.absolute)
        save_raw_backup(path.workspace, base, content)
        path.absolute.write_text(processed, encoding="utf-8")

        tokens = {"input": response.input_tokens, "output": response.output_tokens}
        merge_processing_meta(
            path.workspace,
            base,
            {
                "processed_at": datetime.now(timezone.utc).isoformat(),
                "style": style,
                "model": model,
                "tokens_used": tokens,
                "markers_found": markers.counts(),
            },
        )

        await self.connection.send_push(
            PushEvent.PROCESSING_COMPLETE.value,
            {
                "path": path.relative,
                "result": {
                    "summary": processed[:SUMMARY_PUSH_CHARS],
                    "style": style,
                    "tokens": {"input_tokens": tokens["input"], "output_tokens": tokens["output"]},
                },
            },
        )

        title = extract_title(content, path.relative)
        logger.info(f"Processed note {path.relative} ({style}, {tokens['input']}+{tokens['output']} tokens)")
        return (
            f"Processed note: {title}\n\n"
            f"Summary generated with style: {style}\n"
            f"Tokens used: {tokens['input']} input, {tokens['output']} output\n\n"
            f"Results saved to {path.relative} and displayed in Chronicle AI Output pane."
        )

    def _read_content(self, path: ResolvedPath) -> str:
        if path.content is not None:
            if not path.content.strip():
                raise ToolError(self.name, "No note currently open in Chronicle. Open a note first.")
            return path.content
        if not path.absolute.is_file():
            raise ToolError(self.name, f"Note not found: {path.relative}")
        return path.absolute.read_text(encoding="utf-8")
