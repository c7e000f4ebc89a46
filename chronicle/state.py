"""Read the state file the Chronicle app keeps at ``<workspace>/.chronicle/state.json``."""

import json
import os
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from chronicle.config.schema import Config

STATE_DIR = ".chronicle"
STATE_FILE = "state.json"


class ChronicleState(BaseModel):
    """The subset of app state the agent reads."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    workspace_path: str = Field(alias="workspacePath")
    current_file: str | None = Field(default=None, alias="currentFile")
    last_edited: str | None = Field(default=None, alias="lastEdited")
    note_count: int | None = Field(default=None, alias="noteCount")


def get_state_path(workspace: str | Path) -> Path:
    return Path(workspace) / STATE_DIR / STATE_FILE


def _configured_workspace(config: Config | None) -> str | None:
    if config is not None and config.workspace:
        return config.workspace
    return os.environ.get("CHRONICLE_WORKSPACE") or None


def read_state_file(state_path: Path) -> ChronicleState | None:
    """Parse one state file. Missing or invalid files read as ``None``."""
    try:
        data: Any = json.loads(state_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as e:
        logger.debug(f"Cannot read state file {state_path}: {e}")
        return None
    try:
        return ChronicleState.model_validate(data)
    except ValidationError as e:
        logger.debug(f"Invalid state file {state_path}: {e.error_count()} error(s)")
        return None


def load_state(config: Config | None = None) -> ChronicleState | None:
    """Load app state from the configured workspace, or ``None`` if there is none."""
    workspace = _configured_workspace(config)
    if not workspace:
        return None
    return read_state_file(get_state_path(workspace))
