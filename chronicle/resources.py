"""MCP resources: the current note and the marker/processing configuration."""

import json
from dataclasses import dataclass

from chronicle.agent.tools.guard import ensure_within_workspace
from chronicle.config.schema import Config
from chronicle.state import load_state
from chronicle.utils.exceptions import SecurityError

CURRENT_NOTE_URI = "note://current"
CONFIG_URI = "note://config"


@dataclass
class NoteResource:
    uri: str
    name: str
    description: str
    mime_type: str
    text: str


def _current_note_error(text: str, description: str = "The note currently open in Chronicle") -> NoteResource:
    return NoteResource(
        uri=CURRENT_NOTE_URI,
        name="Current Note",
        description=description,
        mime_type="text/plain",
        text=text,
    )


def get_current_note_resource(config: Config | None = None) -> NoteResource:
    """Read the open note through the app's state file. Errors come back as resource text."""
    state = load_state(config)
    if state is None or not state.workspace_path:
        return _current_note_error("Error: No workspace open in Chronicle. Open a workspace first.")
    if not state.current_file:
        return _current_note_error("No note currently open in Chronicle. Open a note first.")
    try:
        note_path = ensure_within_workspace(state.workspace_path, state.current_file)
        content = note_path.read_text(encoding="utf-8")
    except (SecurityError, OSError) as e:
        message = e.message if isinstance(e, SecurityError) else str(e)
        return _current_note_error(f"Error: {message}", description="Error reading current note")
    return NoteResource(
        uri=CURRENT_NOTE_URI,
        name=state.current_file,
        description=f"Currently editing: {state.current_file}",
        mime_type="text/markdown",
        text=content,
    )


def get_config_resource(config: Config | None = None) -> NoteResource:
    config = config or Config()
    payload = {
        "markers": dict(config.markers),
        "processing": {"default_style": config.default_style},
    }
    return NoteResource(
        uri=CONFIG_URI,
        name="Chronicle Configuration",
        description="Current marker syntax and processing settings",
        mime_type="application/json",
        text=json.dumps(payload, indent=2),
    )


def list_resources(config: Config | None = None) -> list[NoteResource]:
    return [
        NoteResource(
            uri=CURRENT_NOTE_URI,
            name="Current Note",
            description="The note currently open in Chronicle",
            mime_type="text/markdown",
            text="",
        ),
        get_config_resource(config),
    ]


def read_resource(uri: str, config: Config | None = None) -> NoteResource:
    if uri == CURRENT_NOTE_URI:
        return get_current_note_resource(config)
    if uri == CONFIG_URI:
        return get_config_resource(config)
    raise ValueError(f"Unknown resource: {uri}")
