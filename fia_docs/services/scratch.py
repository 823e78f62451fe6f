from __future__ import annotations

import shutil
from pathlib import Path


class ScratchIOError(Exception):
    """Raised when a scratch file cannot be created, read or removed."""


def clear_scratch_dir(path: Path) -> None:
    """Empty ``path`` (creating it if needed)."""
    try:
        if path.exists():
            shutil.rmtree(path)
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ScratchIOError(f"could not reset scratch dir {path}: {exc}") from exc


def write_scratch_file(directory: Path, name: str, payload: bytes) -> Path:
    path = directory / name
    try:
        path.write_bytes(payload)
    except OSError as exc:
        raise ScratchIOError(f"could not write {path}: {exc}") from exc
    if not path.is_file():
        raise ScratchIOError(f"{path} missing after write")
    return path


def read_scratch_file(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise ScratchIOError(f"could not read {path}: {exc}") from exc
