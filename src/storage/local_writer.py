# src/storage/local_writer.py — v1
"""Local filesystem artifact writer (default ARTIFACT_BACKEND=local).

Writes land in a ``*.partial`` sibling first and are renamed into place,
so an invocation cut off by the host never leaves a truncated artifact
under its final name. Leftover partials are hidden from listings.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from pulsecollect.storage.base_output_writer import BaseOutputWriter

PARTIAL_SUFFIX = ".partial"


class LocalWriter(BaseOutputWriter):
    """Artifacts as plain files under ``base_path`` (or absolute paths)."""

    def __init__(self, base_path: str | Path | None = None) -> None:
        self._base = Path(base_path).expanduser() if base_path else None

    def _resolve(self, path: str) -> Path:
        return self._base / path if self._base is not None else Path(path)

    async def write(self, path: str, content: bytes | str) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        data = content.encode("utf-8") if isinstance(content, str) else content
        fd, tmp_name = tempfile.mkstemp(
            dir=str(target.parent), prefix=f".{target.name}.", suffix=PARTIAL_SUFFIX,
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def read(self, path: str) -> bytes:
        return self._resolve(path).read_bytes()

    async def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    async def list_dir(self, path: str) -> list[str]:
        folder = self._resolve(path)
        if not folder.is_dir():
            return []
        return sorted(
            entry.name for entry in folder.iterdir()
            if not entry.name.endswith(PARTIAL_SUFFIX)
        )

    async def ensure_dir(self, path: str) -> None:
        self._resolve(path).mkdir(parents=True, exist_ok=True)

    def url_for(self, path: str) -> str:
        return self._resolve(path).resolve().as_uri()
