"""
Best-effort local copy of each survey's structure.

The mirror keeps the builder usable when the record store is down. Writes never raise;
reads return `None` on a miss or an unreadable entry.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from schemas.survey import SurveyStructure

logger = logging.getLogger(__name__)


def mirror_key(survey_id: Union[int, str]) -> str:
    return f"survey_{survey_id}_structure"


class LocalMirror:
    """
    Process-local key/value mirror, last write wins.

    With `directory` set, entries are also written as `<key>.json` (atomic replace) so they
    survive a restart.
    """

    def __init__(self, directory: Optional[Union[str, Path]] = None) -> None:
        self.directory = Path(directory) if directory else None
        self._entries: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _path(self, key: str) -> Optional[Path]:
        if self.directory is None:
            return None
        return self.directory / f"{key}.json"

    def write(self, survey_id: Union[int, str], structure: SurveyStructure) -> bool:
        key = mirror_key(survey_id)
        payload = structure.to_json()
        with self._lock:
            self._entries[key] = payload

        target = self._path(key)
        if target is None:
            return True
        tmp = target.with_name(f".{target.name}.tmp_{os.getpid()}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False)
            os.replace(tmp, target)
            return True
        except OSError as e:
            logger.warning("mirror write failed for %s: %s", key, e)
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                pass
            return False

    def read(self, survey_id: Union[int, str]) -> Optional[SurveyStructure]:
        key = mirror_key(survey_id)
        with self._lock:
            payload = self._entries.get(key)
        if payload is None:
            payload = self._read_file(key)
        if payload is None:
            return None
        try:
            return SurveyStructure.model_validate(payload)
        except ValidationError as e:
            logger.warning("mirror entry %s is not a valid structure: %s", key, e.error_count())
            return None

    def _read_file(self, key: str) -> Optional[Dict[str, Any]]:
        target = self._path(key)
        if target is None or not target.is_file():
            return None
        try:
            data = json.loads(target.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("mirror read failed for %s: %s", key, e)
            return None
        return data if isinstance(data, dict) else None

    def forget(self, survey_id: Union[int, str]) -> None:
        key = mirror_key(survey_id)
        with self._lock:
            self._entries.pop(key, None)
        target = self._path(key)
        if target is not None:
            try:
                target.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("mirror delete failed for %s: %s", key, e)


__all__ = ["LocalMirror", "mirror_key"]
