from __future__ import annotations

import asyncio
import logging
import re
import shutil
from pathlib import Path
from typing import Protocol, Sequence

logger = logging.getLogger(__name__)

_PAGE_SUFFIX_RE = re.compile(r"-(\d+)$")


class RenderError(Exception):
    """Raised when a document cannot be rendered to page images."""


class DocumentRenderer(Protocol):
    async def render(self, input_path: Path, name_prefix: str) -> list[Path]: ...


class MagickRenderer:
    """Renders every page of a PDF to ``<output_dir>/<prefix>-<page>.jpg`` with ImageMagick."""

    def __init__(
        self,
        command: Sequence[str],
        output_dir: Path,
        *,
        density: int = 150,
        quality: int = 85,
    ) -> None:
        self.command = list(command)
        self.output_dir = output_dir
        self.density = density
        self.quality = quality

    def is_available(self) -> bool:
        return bool(self.command) and shutil.which(self.command[0]) is not None

    async def render(self, input_path: Path, name_prefix: str) -> list[Path]:
        pattern = self.output_dir / f"{name_prefix}-%d.jpg"
        args = [
            *self.command,
            "-density",
            str(self.density),
            str(input_path),
            "-background",
            "white",
            "-alpha",
            "remove",
            "-quality",
            str(self.quality),
            str(pattern),
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await process.communicate()
        except OSError as exc:
            raise RenderError(f"could not start {self.command[0]}: {exc}") from exc

        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()[-500:]
            raise RenderError(f"{self.command[0]} exited with {process.returncode}: {detail}")

        pages = collect_pages(self.output_dir, name_prefix)
        if not pages:
            raise RenderError(f"{self.command[0]} produced no pages for {input_path.name}")
        logger.info("rendered document file=%s pages=%s", input_path.name, len(pages))
        return pages


def collect_pages(directory: Path, name_prefix: str) -> list[Path]:
    """Return ``<prefix>-<n>.jpg`` files ordered by page number, not by name."""
    numbered: list[tuple[int, Path]] = []
    for path in directory.glob(f"{name_prefix}-*.jpg"):
        match = _PAGE_SUFFIX_RE.search(path.stem)
        if match and path.stem[: match.start()] == name_prefix:
            numbered.append((int(match.group(1)), path))
    return [path for _, path in sorted(numbered)]
