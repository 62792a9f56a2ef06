from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from supabase import Client

from cotask.modules.realtime.feed import ChangeBroker, ChangeEvent, DELETE, INSERT, UPDATE


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseService:
    """Base for services that read and write Supabase tables.

    When a local ChangeBroker is attached, every successful mutation is
    published to it so that live sessions see the change.
    """

    def __init__(self, supabase: Client, changes: Optional[ChangeBroker] = None):
        self.supabase = supabase
        self.changes = changes

    def _first(self, table: str, **filters: Any) -> Optional[Dict[str, Any]]:
        query = self.supabase.table(table).select("*")
        for column, value in filters.items():
            query = query.eq(column, value)
        result = query.limit(1).execute()
        return result.data[0] if result.data else None

    def _published_inserts(self, table: str, rows: List[Dict[str, Any]]) -> None:
        for row in rows:
            self._publish(table, INSERT, new=row)

    def _published_updates(self, table: str, rows: List[Dict[str, Any]], before: Optional[Dict[str, Any]] = None) -> None:
        for row in rows:
            self._publish(table, UPDATE, new=row, old=before or {"id": row.get("id")})

    def _published_deletes(self, table: str, rows: List[Dict[str, Any]]) -> None:
        for row in rows:
            self._publish(table, DELETE, old=row)

    def _publish(self, table: str, event_type: str, new=None, old=None) -> None:
        if self.changes is None:
            return
        self.changes.publish(ChangeEvent(table=table, event_type=event_type, new=new or {}, old=old or {}))
