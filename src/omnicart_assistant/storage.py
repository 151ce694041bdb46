"""Flat JSON document store for the corpus and knowledge-base snapshots."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
import tempfile
from typing import Any


_LOGGER = logging.getLogger(__name__)

PRODUCTS_DOCUMENT = "products"
SHOPS_DOCUMENT = "shops"
KNOWLEDGE_DOCUMENT = "knowledge-base"


class JsonDocumentStore:
    """Named JSON documents, each replaced wholesale on write."""

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = Path(root_dir)

    def path_for(self, name: str) -> Path:
        return self.root_dir / f"{name}.json"

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def read(self, name: str, default: dict[str, Any] | None = None) -> dict[str, Any]:
        path = self.path_for(name)
        fallback = dict(default) if default is not None else {}
        if not path.is_file():
            return fallback
        try:
            parsed = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            _LOGGER.warning("Ignoring unreadable document %s: %s", path, exc)
            return fallback
        if not isinstance(parsed, dict):
            _LOGGER.warning("Ignoring document %s: top-level value is not an object.", path)
            return fallback
        return parsed

    def write(self, name: str, payload: dict[str, Any]) -> Path:
        self.root_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(name)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{name}.", suffix=".tmp", dir=str(self.root_dir))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, ensure_ascii=False)
                handle.write("\n")
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return path
