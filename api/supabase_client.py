"""
Supabase-backed survey record store.

Uses the official Supabase Python client. Rows live in the `surveys` table:
`id`, `name`, `language`, `collection_mode`, `status`, `structure` (jsonb), `created_at`,
`updated_at`. Any client or network failure surfaces as `StoreUnavailable` so the workflow
can continue on its local mirror.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from supabase import Client, create_client

from programs.survey_plan.errors import StoreUnavailable, SurveyNotFound
from programs.survey_plan.store import MemorySurveyStore, SurveyRecordStore
from schemas.survey import Survey, SurveyCreate, SurveyStructure, SurveyUpdate

logger = logging.getLogger(__name__)

SURVEYS_TABLE = "surveys"


def supabase_credentials() -> tuple[Optional[str], Optional[str]]:
    # NEXT_PUBLIC_* first for parity with the web app's env files.
    url = os.getenv("NEXT_PUBLIC_SUPABASE_URL") or os.getenv("SUPABASE_URL")
    # Service role key for backend (full access), anon key otherwise.
    key = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("NEXT_PUBLIC_SUPABASE_ANON_KEY")
    return url, key


def get_supabase_client() -> Optional[Client]:
    url, key = supabase_credentials()
    if not url or not key:
        return None
    try:
        return create_client(url, key)
    except Exception as e:
        logger.warning("failed to create Supabase client: %s", e)
        return None


def _row_from_survey(values: Dict[str, Any]) -> Dict[str, Any]:
    row: Dict[str, Any] = {}
    for k, v in values.items():
        if isinstance(v, SurveyStructure):
            v = v.to_json()
        elif isinstance(v, datetime):
            v = v.isoformat()
        row[k] = v
    return row


def _survey_from_row(row: Dict[str, Any]) -> Survey:
    try:
        return Survey.model_validate(
            {
                "id": row.get("id"),
                "name": row.get("name") or "",
                "language": row.get("language") or "English",
                "collection_mode": row.get("collection_mode") or "web",
                "status": row.get("status") or "draft",
                "structure": row.get("structure"),
                "created_at": row.get("created_at"),
                "updated_at": row.get("updated_at"),
            }
        )
    except ValidationError as e:
        raise StoreUnavailable(f"Unexpected survey row from Supabase: {e.error_count()} field error(s)") from e


class SupabaseSurveyStore:
    def __init__(self, client: Client, *, table: str = SURVEYS_TABLE) -> None:
        self._client = client
        self._table = table

    def _query(self):
        return self._client.table(self._table)

    def _execute(self, what: str, build) -> List[Dict[str, Any]]:
        try:
            result = build().execute()
        except Exception as e:
            logger.warning("Supabase %s on %s failed: %s", what, self._table, e)
            raise StoreUnavailable(f"Survey store unavailable ({what}): {e}") from e
        rows = result.data or []
        return [r for r in rows if isinstance(r, dict)]

    def create(self, survey: SurveyCreate, structure: Optional[SurveyStructure] = None) -> Survey:
        values: Dict[str, Any] = survey.model_dump()
        if structure is not None:
            values["structure"] = structure
        rows = self._execute("insert", lambda: self._query().insert(_row_from_survey(values)))
        if not rows:
            raise StoreUnavailable("Survey store returned no row for insert")
        return _survey_from_row(rows[0])

    def get(self, survey_id: int) -> Optional[Survey]:
        rows = self._execute("select", lambda: self._query().select("*").eq("id", survey_id).limit(1))
        return _survey_from_row(rows[0]) if rows else None

    def update(self, survey_id: int, changes: SurveyUpdate) -> Survey:
        values = changes.changes()
        values["updated_at"] = datetime.now(timezone.utc)
        rows = self._execute("update", lambda: self._query().update(_row_from_survey(values)).eq("id", survey_id))
        if not rows:
            raise SurveyNotFound(survey_id)
        return _survey_from_row(rows[0])

    def list(self) -> List[Survey]:
        rows = self._execute("select", lambda: self._query().select("*").order("created_at", desc=True))
        return [_survey_from_row(r) for r in rows]

    def delete(self, survey_id: int) -> None:
        rows = self._execute("delete", lambda: self._query().delete().eq("id", survey_id))
        if not rows:
            raise SurveyNotFound(survey_id)


def create_survey_store() -> SurveyRecordStore:
    """Supabase when credentials are configured, otherwise an in-memory store."""
    client = get_supabase_client()
    if client is not None:
        logger.info("using Supabase survey store (table %s)", SURVEYS_TABLE)
        return SupabaseSurveyStore(client)
    logger.warning("Supabase not configured; using in-memory survey store. Data will not persist.")
    return MemorySurveyStore()


__all__ = ["SupabaseSurveyStore", "create_survey_store", "get_supabase_client", "supabase_credentials"]
