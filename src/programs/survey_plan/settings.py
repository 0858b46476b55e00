from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_PLANNER_API_BASE_URL = "http://127.0.0.1:8000"
DEFAULT_FAST_API_BASE_URL = "http://127.0.0.1:8000/anomaly"


def env_str(name: str, default: str) -> str:
    v = (os.getenv(name) or "").strip()
    return v or default


def env_bool(name: str, default: bool = False) -> bool:
    v = (os.getenv(name) or "").strip().lower()
    if not v:
        return default
    return v in {"1", "true", "yes", "y", "on"}


def env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class SurveyPlanSettings:
    """
    Runtime configuration for the plan workflow.

    Env vars:
    - `SURVEY_PLANNER_API_BASE_URL` / `SURVEY_FAST_API_BASE_URL`: backend base URLs
    - `SURVEY_API_MOUNT_PREFIX`: sub-path some deployments mount the backend under (tried both ways)
    - `SURVEY_API_PATH_PREFIX`: route prefix in front of `/survey-plan`
    - `SURVEY_HTTP_TIMEOUT_SEC`: per-request timeout
    - `SURVEY_PLAN_AUTO_FIX`: pass `auto_fix` to generate-validate-fix
    - `SURVEY_MIRROR_DIR`: optional directory for on-disk mirror copies
    """

    planner_base_url: str = DEFAULT_PLANNER_API_BASE_URL
    fast_base_url: str = DEFAULT_FAST_API_BASE_URL
    mount_prefix: str = "/anomaly"
    path_prefix: str = "/api/upsert-survey"
    timeout_sec: int = 30
    auto_fix: bool = True
    mirror_dir: Optional[Path] = None

    @classmethod
    def from_env(cls) -> "SurveyPlanSettings":
        mirror_dir = (os.getenv("SURVEY_MIRROR_DIR") or "").strip()
        return cls(
            planner_base_url=env_str("SURVEY_PLANNER_API_BASE_URL", DEFAULT_PLANNER_API_BASE_URL),
            fast_base_url=env_str("SURVEY_FAST_API_BASE_URL", DEFAULT_FAST_API_BASE_URL),
            mount_prefix=env_str("SURVEY_API_MOUNT_PREFIX", "/anomaly"),
            path_prefix=env_str("SURVEY_API_PATH_PREFIX", "/api/upsert-survey"),
            timeout_sec=max(1, env_int("SURVEY_HTTP_TIMEOUT_SEC", 30)),
            auto_fix=env_bool("SURVEY_PLAN_AUTO_FIX", default=True),
            mirror_dir=Path(mirror_dir) if mirror_dir else None,
        )

    def plan_path(self, *parts: str) -> str:
        base = "/" + "/".join(p.strip("/") for p in (self.path_prefix, "survey-plan") if p.strip("/"))
        tail = "/".join(str(p).strip("/") for p in parts if str(p).strip("/"))
        return f"{base}/{tail}" if tail else base


__all__ = ["SurveyPlanSettings", "env_bool", "env_int", "env_str"]
