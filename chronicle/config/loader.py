"""Locate, read and write ``~/.chronicle/config.json``."""

import json
import re
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from chronicle.config.schema import Config

# Marker keys are user-chosen names, not field names; never rewrite them.
_VERBATIM_KEYS = frozenset({"markers"})

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def get_config_path() -> Path:
    return Path.home() / ".chronicle" / "config.json"


def get_data_dir() -> Path:
    """``~/.chronicle``, created on first use. Logs live under it."""
    path = Path.home() / ".chronicle"
    path.mkdir(parents=True, exist_ok=True)
    return path


def load_config(config_path: Path | None = None) -> Config:
    """
    Build the effective configuration.

    Values come from ``CHRONICLE_*`` environment variables first, then the
    JSON file (camelCase or snake_case keys), then field defaults. A missing
    file is fine; an unreadable one is an error the user has to fix.

    Raises:
        ValueError: the file exists but is not a JSON object.
    """
    path = config_path or get_config_path()
    if not path.exists():
        return Config()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("config root must be a JSON object")
        config = Config(**convert_keys(data))
    except (json.JSONDecodeError, ValueError) as e:
        raise ValueError(
            f"Failed to load config from {path}: {e}. "
            "Fix the file or remove it to use defaults."
        ) from e
    logger.debug(f"Loaded config from {path}")
    return config


def save_config(config: Config, config_path: Path | None = None) -> None:
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = convert_to_camel(config.model_dump())
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


def _rename_keys(data: Any, rename: Callable[[str], str]) -> Any:
    if isinstance(data, list):
        return [_rename_keys(item, rename) for item in data]
    if not isinstance(data, dict):
        return data
    renamed: dict[str, Any] = {}
    for key, value in data.items():
        new_key = rename(key)
        if new_key in _VERBATIM_KEYS or key in _VERBATIM_KEYS:
            renamed[new_key] = dict(value) if isinstance(value, dict) else value
        else:
            renamed[new_key] = _rename_keys(value, rename)
    return renamed


def convert_keys(data: Any) -> Any:
    """camelCase keys to snake_case, recursively."""
    return _rename_keys(data, camel_to_snake)


def convert_to_camel(data: Any) -> Any:
    """snake_case keys to camelCase, recursively."""
    return _rename_keys(data, snake_to_camel)


def camel_to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)
