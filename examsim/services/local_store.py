"""Directory backed key/value slots for in-progress exam state.

Every slot is a single JSON document. Reads and writes never raise: a slot
that cannot be read is reported as missing, and failed writes are logged.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def storage_key(attempt_id: str) -> str:
    return f"exam_attempt_{attempt_id}"


class LocalProgressStore:
    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self.directory = Path(directory)

    def _path_for(self, key: str) -> Path:
        return self.directory / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    def load(self, key: str) -> dict[str, Any] | None:
        path = self._path_for(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError:
            logger.exception("Error reading saved progress %s", key)
            return None

        try:
            data = json.loads(raw)
        except ValueError:
            logger.error("Error parsing saved progress %s; ignoring slot", key)
            return None
        if not isinstance(data, dict):
            logger.error("Saved progress %s is not an object; ignoring slot", key)
            return None
        return data

    def save(self, key: str, data: dict[str, Any]) -> bool:
        path = self._path_for(key)
        tmp_path = path.with_suffix(".tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(data), encoding="utf-8")
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError):
            logger.exception("Error saving progress %s", key)
            return False
        return True

    def remove(self, key: str) -> None:
        try:
            self._path_for(key).unlink(missing_ok=True)
        except OSError:
            logger.exception("Error removing saved progress %s", key)

    def __contains__(self, key: str) -> bool:
        return self._path_for(key).exists()


__all__ = ["LocalProgressStore", "storage_key"]
