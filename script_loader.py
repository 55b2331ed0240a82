"""Filesystem-backed loader for recorded test scripts."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

import yaml

from commands import COMMANDS, Command
from exceptions import ScriptLoadError, ScriptValidationError, UnknownCommandError
from script_types import TestScript


def _as_set(value: Any) -> Set[str]:
    """Convert value to set of strings."""
    if value is None:
        return set()
    if isinstance(value, (list, set, tuple)):
        return {str(item) for item in value}
    if isinstance(value, str):
        return {value}
    raise ScriptLoadError(f"Expected string, list, or set, got {type(value).__name__}")


def _parse_command(entry: Any, position: int, script_id: str) -> Command:
    """Parse a [name, target, value] list or a {command, target, value} mapping."""
    if isinstance(entry, str):
        entry = [entry]
    if isinstance(entry, (list, tuple)):
        if not 1 <= len(entry) <= 3:
            raise ScriptValidationError(
                f"Command #{position} must have 1 to 3 items, got {len(entry)}",
                script_id=script_id,
                field="commands",
            )
        name, target, value = (list(entry) + ["", ""])[:3]
    elif isinstance(entry, dict):
        name = entry.get("command") or entry.get("name")
        target = entry.get("target", "")
        value = entry.get("value", "")
    else:
        raise ScriptValidationError(
            f"Command #{position} must be a list or a mapping",
            script_id=script_id,
            field="commands",
        )

    if not name:
        raise ScriptValidationError(f"Command #{position} has no name", script_id=script_id, field="commands")

    cmd = Command(
        name=str(name),
        target="" if target is None else str(target),
        value="" if value is None else str(value),
        line=position,
    )
    try:
        cmd.validate()
    except UnknownCommandError as exc:
        raise ScriptValidationError(
            f"Command #{position}: {exc.message}", script_id=script_id, field="commands"
        ) from exc
    return cmd


def _parse_script(data: Dict[str, Any], fallback_id: str) -> TestScript:
    """Parse a dictionary into a TestScript."""
    if not isinstance(data, dict):
        raise ScriptLoadError("Script payload must be a mapping")

    script_id = str(data.get("id") or fallback_id)
    raw_commands = data.get("commands") or data.get("steps")

    if not raw_commands:
        raise ScriptValidationError("Script has no commands", script_id=script_id, field="commands")
    if not isinstance(raw_commands, list):
        raise ScriptValidationError("commands must be a list", script_id=script_id, field="commands")

    commands = [_parse_command(entry, i, script_id) for i, entry in enumerate(raw_commands, 1)]

    return TestScript(
        id=script_id,
        commands=commands,
        name=data.get("name"),
        base_url=data.get("base_url"),
        tags=_as_set(data.get("tags")),
        skip=bool(data.get("skip", False)),
        skip_reason=data.get("skip_reason"),
    )


def load_script_file(path: Path) -> TestScript:
    """Load a single script file (YAML or JSON)."""
    try:
        raw = path.read_text(encoding="utf-8")
        if path.suffix.lower() in {".yml", ".yaml"}:
            data = yaml.safe_load(raw)
        else:
            data = json.loads(raw)
        return _parse_script(data, fallback_id=path.stem)
    except (ScriptLoadError, ScriptValidationError):
        raise
    except Exception as exc:
        raise ScriptLoadError(f"Failed to load script file: {exc}", file_path=str(path)) from exc


def discover_scripts(
    scripts_dir: Path,
    only_ids: Optional[Iterable[str]] = None,
    include_tags: Optional[Set[str]] = None,
    exclude_tags: Optional[Set[str]] = None,
    include_skipped: bool = False,
) -> List[TestScript]:
    """
    Discover and load scripts from a directory.

    Args:
        scripts_dir: Directory containing script YAML/JSON files
        only_ids: If provided, only load scripts with these IDs
        include_tags: If provided, only include scripts with at least one of these tags
        exclude_tags: If provided, exclude scripts with any of these tags
        include_skipped: If True, include scripts marked as skip=true

    Returns:
        List of TestScript objects, in file name order
    """
    scripts_dir = scripts_dir.expanduser().resolve()

    if not scripts_dir.exists():
        raise ScriptLoadError(f"Scripts directory does not exist: {scripts_dir}")

    id_filter = set(only_ids or [])
    found: List[TestScript] = []

    paths = sorted(
        p for p in scripts_dir.iterdir() if p.suffix.lower() in {".yaml", ".yml", ".json"}
    )

    for path in paths:
        script = load_script_file(path)

        if id_filter and script.id not in id_filter:
            continue
        if script.skip and not include_skipped:
            continue
        if not script.matches_filter(include_tags, exclude_tags):
            continue

        found.append(script)

    if id_filter:
        missing = id_filter - {s.id for s in found}
        if missing:
            raise ScriptLoadError(f"Scripts not found: {', '.join(sorted(missing))}")

    return found


def validate_script(data: Dict[str, Any]) -> List[str]:
    """
    Validate script data without loading.

    Returns list of validation errors (empty if valid).
    """
    errors = []

    if not isinstance(data, dict):
        return ["Script must be a dictionary/mapping"]

    raw_commands = data.get("commands") or data.get("steps")
    if not raw_commands:
        errors.append("Missing required field: commands")
    elif not isinstance(raw_commands, list):
        errors.append("commands must be a list")
    else:
        for i, entry in enumerate(raw_commands, 1):
            if isinstance(entry, dict):
                name = entry.get("command") or entry.get("name")
            elif isinstance(entry, (list, tuple)) and entry:
                name = entry[0]
            elif isinstance(entry, str):
                name = entry
            else:
                errors.append(f"Command #{i} must be a list or a mapping")
                continue
            if name not in COMMANDS:
                errors.append(f"Command #{i}: unknown command {name!r}")

    tags = data.get("tags")
    if tags is not None and not isinstance(tags, (str, list, set)):
        errors.append("tags must be a string or list")

    base_url = data.get("base_url")
    if base_url is not None and "://" not in str(base_url):
        errors.append("base_url must be an absolute URL")

    return errors
