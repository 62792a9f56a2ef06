import logging
from typing import Any, Dict, Iterator, List, Optional

from supabase import Client

from cotask.core.errors import AlreadyExistsError, ForbiddenError, NotFoundError, SelfReferenceError
from cotask.database.service import SupabaseService
from cotask.database.supabase_client import store_errors
from cotask.modules.contacts.models import BLOCKED, FRIEND, PENDING, PENDING_RECEIVED, PENDING_SENT
from cotask.modules.contacts.schemas import Contact, ContactsSummary, RelationshipResponse
from cotask.modules.profiles.service import ProfileService, unknown_profile
from cotask.modules.realtime.feed import ChangeBroker

logger = logging.getLogger(__name__)

RELATIONSHIPS = "user_relationships"


def perspective_status(row: Dict[str, Any], user_id: str) -> str:
    """Status of a relationship row as seen by user_id."""
    relationship_type = row.get("relationship_type")
    if relationship_type == FRIEND:
        return FRIEND
    if relationship_type == PENDING:
        return PENDING_SENT if row.get("user_id") == user_id else PENDING_RECEIVED
    return BLOCKED


def other_member(row: Dict[str, Any], user_id: str) -> str:
    return row["related_user_id"] if row.get("user_id") == user_id else row["user_id"]


class ContactListing:
    """Lazy, restartable view of a user's relationships.

    Nothing is fetched until iteration starts, and every new iteration reads
    the ledger again.
    """

    def __init__(self, service: "RelationshipService", user_id: str):
        self._service = service
        self.user_id = user_id

    def __iter__(self) -> Iterator[Contact]:
        rows = self._service.rows_for_user(self.user_id)
        if not rows:
            return
        profiles = self._service.profiles.get_summaries(other_member(r, self.user_id) for r in rows)
        for row in rows:
            other_id = other_member(row, self.user_id)
            profile = profiles.get(other_id) or unknown_profile(other_id)
            yield Contact(
                id=other_id,
                name=profile.name or profile.username,
                username=profile.username,
                avatar_url=profile.avatar_url,
                relationship_id=row["id"],
                status=perspective_status(row, self.user_id),
                created_at=row.get("created_at"),
            )


class RelationshipService(SupabaseService):
    def __init__(self, supabase: Client, profiles: ProfileService, changes: Optional[ChangeBroker] = None):
        super().__init__(supabase, changes)
        self.profiles = profiles

    def get_relationship(self, relationship_id: str) -> Dict[str, Any]:
        with store_errors("load relationship"):
            row = self._first(RELATIONSHIPS, id=relationship_id)
        if not row:
            raise NotFoundError("Relationship not found")
        return row

    def find_between(self, user_a: str, user_b: str) -> Optional[Dict[str, Any]]:
        """Row for the unordered pair, whichever side sent it."""
        with store_errors("look up relationship"):
            return self._first(RELATIONSHIPS, user_id=user_a, related_user_id=user_b) \
                or self._first(RELATIONSHIPS, user_id=user_b, related_user_id=user_a)

    def rows_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        with store_errors("load contacts"):
            sent = self.supabase.table(RELATIONSHIPS)\
                .select("*")\
                .eq("user_id", user_id)\
                .execute()
            received = self.supabase.table(RELATIONSHIPS)\
                .select("*")\
                .eq("related_user_id", user_id)\
                .execute()
        dedup: Dict[str, Dict[str, Any]] = {}
        for row in (sent.data or []) + (received.data or []):
            dedup[row["id"]] = row
        return sorted(dedup.values(), key=lambda r: r.get("created_at") or "", reverse=True)

    def request_connection(self, requester_id: str, target_id: str) -> RelationshipResponse:
        if requester_id == target_id:
            raise SelfReferenceError("You cannot add yourself!")
        if self.find_between(requester_id, target_id):
            raise AlreadyExistsError("Relationship already exists!")
        with store_errors("send friend request"):
            result = self.supabase.table(RELATIONSHIPS).insert({
                "user_id": requester_id,
                "related_user_id": target_id,
                "relationship_type": PENDING,
            }).execute()
        logger.info(f"User {requester_id} sent a connection request to {target_id}")
        self._published_inserts(RELATIONSHIPS, result.data or [])
        return RelationshipResponse(**result.data[0])

    def request_by_username(self, requester_id: str, username: str) -> RelationshipResponse:
        target = self.profiles.require_by_username(username)
        return self.request_connection(requester_id, target.id)

    def accept(self, relationship_id: str, acting_user_id: str) -> RelationshipResponse:
        row = self.get_relationship(relationship_id)
        if row.get("relationship_type") != PENDING or row.get("related_user_id") != acting_user_id:
            logger.warning(f"User {acting_user_id} may not accept relationship {relationship_id}")
            raise ForbiddenError("Only the recipient can accept a pending request")
        with store_errors("accept friend request"):
            result = self.supabase.table(RELATIONSHIPS)\
                .update({"relationship_type": FRIEND})\
                .eq("id", relationship_id)\
                .eq("relationship_type", PENDING)\
                .execute()
        if not result.data:
            raise NotFoundError("Relationship not found")
        self._published_updates(RELATIONSHIPS, result.data, before=row)
        return RelationshipResponse(**result.data[0])

    def _delete_as_member(self, relationship_id: str, acting_user_id: str, action: str) -> bool:
        row = self.get_relationship(relationship_id)
        if acting_user_id not in (row.get("user_id"), row.get("related_user_id")):
            logger.warning(f"User {acting_user_id} is not part of relationship {relationship_id}")
            raise ForbiddenError("You are not part of this relationship")
        with store_errors(action):
            result = self.supabase.table(RELATIONSHIPS)\
                .delete()\
                .eq("id", relationship_id)\
                .execute()
        self._published_deletes(RELATIONSHIPS, result.data or [row])
        return True

    def reject(self, relationship_id: str, acting_user_id: str) -> bool:
        return self._delete_as_member(relationship_id, acting_user_id, "reject friend request")

    def remove(self, relationship_id: str, acting_user_id: str) -> bool:
        return self._delete_as_member(relationship_id, acting_user_id, "remove contact")

    def list_for_user(self, user_id: str) -> ContactListing:
        return ContactListing(self, user_id)

    def summary(self, user_id: str) -> ContactsSummary:
        statuses = [perspective_status(r, user_id) for r in self.rows_for_user(user_id)]
        return ContactsSummary(
            friends=statuses.count(FRIEND),
            pending_sent=statuses.count(PENDING_SENT),
            pending_received=statuses.count(PENDING_RECEIVED),
        )

    def pending_received_count(self, user_id: str) -> int:
        return self.summary(user_id).pending_received
