from __future__ import annotations

"""Path resolution for config-driven runs."""

from pathlib import Path
from typing import Iterable

# Files that mark a checkout root; the first match walking upwards wins.
PROJECT_MARKERS: tuple[str, ...] = ("pyproject.toml",)


def resolve_base_dir(config_path: str | Path) -> Path:
    """
    Directory that relative ``inputs``/``outputs`` entries are resolved against.

    A config inside a project checkout resolves against the project root, so
    the same YAML works from any working directory. A standalone config
    resolves against its own directory.
    """
    config_dir = Path(config_path).expanduser().resolve().parent
    for candidate in (config_dir, *config_dir.parents):
        if any((candidate / marker).is_file() for marker in PROJECT_MARKERS):
            return candidate
    return config_dir


def resolve_path(base_dir: Path, raw_path: str | Path) -> Path:
    path = Path(raw_path).expanduser()
    if path.is_absolute():
        return path
    return base_dir / path


def resolve_input_paths(base_dir: Path, raw_paths: Iterable[str | Path]) -> list[Path]:
    """Resolve input CSV entries, dropping repeats while keeping the first position."""
    resolved: dict[Path, None] = {}
    for raw in raw_paths:
        resolved.setdefault(resolve_path(base_dir, raw), None)
    return list(resolved)


def resolve_output_path(base_dir: Path, raw_path: str | Path | None, default: str) -> Path:
    return resolve_path(base_dir, default if raw_path is None else raw_path)
