import logging
from typing import Iterable, Optional

from cotask.modules.contacts.service import RelationshipService
from cotask.modules.dashboard.schemas import DashboardItems, DashboardOverview, TaskStats
from cotask.modules.lists.service import ListService
from cotask.modules.notes.service import NoteService
from cotask.modules.sharing.schemas import BulkResponse
from cotask.modules.sharing.service import ResourceService

logger = logging.getLogger(__name__)


class DashboardService:
    """Aggregates for the landing dashboard plus bulk actions over selected items."""

    def __init__(self, lists: ListService, notes: NoteService, relationships: RelationshipService):
        self.lists = lists
        self.notes = notes
        self.relationships = relationships

    def _service(self, kind: str) -> ResourceService:
        return self.lists if kind == "list" else self.notes

    def overview(self, user_id: str) -> DashboardOverview:
        lists = self.lists.visible_rows(user_id)
        notes = self.notes.visible_rows(user_id)
        active = [r for r in lists + notes if not r.get("is_archived")]
        return DashboardOverview(
            stats=TaskStats(**self.lists.stats(user_id)),
            owned_lists=sum(1 for r in lists if not r["is_shared"]),
            shared_lists=sum(1 for r in lists if r["is_shared"]),
            owned_notes=sum(1 for r in notes if not r["is_shared"]),
            shared_notes=sum(1 for r in notes if r["is_shared"]),
            pinned=sum(1 for r in active if r.get("is_pinned")),
            pending_requests=self.relationships.pending_received_count(user_id),
        )

    def items(self, user_id: str, kind: str = "all", query: Optional[str] = None, sort: str = "created") -> DashboardItems:
        return DashboardItems(
            lists=self.lists.browse(user_id, query, sort) if kind in ("all", "lists") else [],
            notes=self.notes.browse(user_id, query, sort) if kind in ("all", "notes") else [],
        )

    def bulk_archive(self, user_id: str, kind: str, ids: Iterable[str]) -> BulkResponse:
        result = self._service(kind).bulk_archive(user_id, ids)
        logger.info(f"User {user_id} archived {result.affected} {kind}(s), skipped {len(result.skipped)}")
        return result

    def bulk_delete(self, user_id: str, kind: str, ids: Iterable[str]) -> BulkResponse:
        result = self._service(kind).bulk_delete(user_id, ids)
        logger.info(f"User {user_id} deleted {result.affected} {kind}(s), skipped {len(result.skipped)}")
        return result
