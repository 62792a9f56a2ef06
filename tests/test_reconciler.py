import copy

import pytest

from cotask.modules.realtime.feed import ChangeEvent
from cotask.modules.realtime.reconciler import CollaborativeView, PendingMutations
from cotask.modules.sharing.models import LIST_KIND

ME = "me"
OWNER = "owner"


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def event(table, event_type, new=None, old=None):
    return ChangeEvent(table=table, event_type=event_type, new=new or {}, old=old or {})


def shared_list(list_id="l1", permission="view", tasks=()):
    return {
        "id": list_id, "created_by": OWNER, "title": "Groceries", "is_pinned": False,
        "is_archived": False, "permission": permission, "is_shared": True, "tasks": list(tasks),
    }


def task(task_id="t1", list_id="l1", **fields):
    return {"id": task_id, "list_id": list_id, "title": "Milk", "is_completed": False, **fields}


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def fetched():
    return {}


@pytest.fixture
def view(clock, fetched):
    def loader(kind_name, resource_id):
        return copy.deepcopy(fetched.get((kind_name, resource_id)))

    return CollaborativeView(ME, loader=loader, pending=PendingMutations(ttl_seconds=5, clock=clock))


def apply_twice(view, change):
    view.apply(change)
    once = view.snapshot()
    view.apply(change)
    return once, view.snapshot()


def test_insert_of_present_row_is_ignored(view):
    view.load(lists=[shared_list(tasks=[task()])])

    changed = view.apply(event("tasks", "INSERT", new=task(title="Stale copy")))

    assert changed is False
    assert view.snapshot()["lists"]["shared"][0]["tasks"][0]["title"] == "Milk"


def test_own_resource_insert_uses_payload_without_loader():
    view = CollaborativeView(ME)
    view.apply(event("lists", "INSERT", new={"id": "l9", "created_by": ME, "title": "Mine"}))

    [owned] = view.snapshot()["lists"]["owned"]
    assert owned["permission"] == "owner"
    assert owned["tasks"] == []


@pytest.mark.parametrize("change", [
    event("tasks", "INSERT", new=task("t2")),
    event("tasks", "UPDATE", new=task("t1", is_completed=True)),
    event("tasks", "DELETE", old={"id": "t1"}),
    event("lists", "UPDATE", new={"id": "l1", "created_by": OWNER, "title": "Weekly"}),
    event("list_shares", "DELETE", old={"id": "g1"}),
    event("list_shares", "UPDATE", new={"id": "g1", "list_id": "l1", "user_id": ME, "permission": "edit"}),
])
def test_every_fold_is_idempotent(view, change):
    view.load(lists=[shared_list(tasks=[task()])], grants=[(LIST_KIND, {"id": "g1", "list_id": "l1", "user_id": ME})])

    once, twice = apply_twice(view, change)

    assert once == twice


def test_update_merges_and_keeps_annotations(view):
    view.load(lists=[shared_list(permission="edit")])

    view.apply(event("lists", "UPDATE", new={"id": "l1", "created_by": OWNER, "title": "Weekly"}))

    [row] = view.snapshot()["lists"]["shared"]
    assert row["title"] == "Weekly"
    assert row["permission"] == "edit"


def test_update_for_absent_resource_fetches_it(view, fetched):
    fetched[("list", "l1")] = shared_list()

    assert view.apply(event("lists", "UPDATE", new={"id": "l1", "created_by": OWNER})) is True
    assert [r["id"] for r in view.snapshot()["lists"]["shared"]] == ["l1"]


def test_new_grant_fetches_resource(view, fetched):
    fetched[("list", "l1")] = shared_list(tasks=[task()])

    view.apply(event("list_shares", "INSERT", new={"id": "g1", "list_id": "l1", "user_id": ME, "permission": "view"}))

    [row] = view.snapshot()["lists"]["shared"]
    assert [t["id"] for t in row["tasks"]] == ["t1"]
    assert view.grant_index == {"g1": ("list", "l1")}


def test_grant_delete_with_only_id_removes_shared_resource(view):
    view.load(lists=[shared_list(tasks=[task()])], grants=[(LIST_KIND, {"id": "g1", "list_id": "l1", "user_id": ME})])

    assert view.apply(event("list_shares", "DELETE", old={"id": "g1"})) is True

    assert view.snapshot()["lists"]["shared"] == []
    assert view.task_index == {}


def test_grant_delete_never_removes_owned_resource(view):
    view.load(lists=[{"id": "mine", "created_by": ME, "title": "Mine"}])

    view.apply(event("list_shares", "DELETE", old={"id": "g", "list_id": "mine", "user_id": ME}))

    assert [r["id"] for r in view.snapshot()["lists"]["owned"]] == ["mine"]


def test_task_delete_routes_through_index(view):
    view.load(lists=[shared_list(tasks=[task("t1"), task("t2")])])

    view.apply(event("tasks", "DELETE", old={"id": "t1"}))

    assert [t["id"] for t in view.snapshot()["lists"]["shared"][0]["tasks"]] == ["t2"]


def test_task_for_invisible_list_is_ignored(view):
    view.load(lists=[shared_list()])

    assert view.apply(event("tasks", "INSERT", new=task("t5", list_id="other"))) is False


def test_relationship_events(view):
    rel = {"id": "r1", "user_id": "friend", "related_user_id": ME, "relationship_type": "pending"}

    view.apply(event("user_relationships", "INSERT", new=rel))
    assert view.snapshot()["pending_received"] == 1

    view.apply(event("user_relationships", "UPDATE", new={**rel, "relationship_type": "friend"}))
    snapshot = view.snapshot()
    assert snapshot["pending_received"] == 0
    assert snapshot["relationships"][0]["status"] == "friend"

    view.apply(event("user_relationships", "DELETE", old={"id": "r1"}))
    assert view.snapshot()["relationships"] == []


def test_echo_clears_pending_mutation(view):
    view.load(lists=[shared_list(permission="edit", tasks=[task()])])

    view.apply_local("tasks", "t1", {"is_completed": True})
    assert len(view.pending) == 1

    view.apply(event("tasks", "UPDATE", new=task(is_completed=True, updated_at="later")))

    assert len(view.pending) == 0
    assert view.find_row("tasks", "t1")["updated_at"] == "later"


def test_stale_update_does_not_clobber_pending_field(view):
    view.load(lists=[shared_list(permission="edit", tasks=[task()])])
    view.apply_local("tasks", "t1", {"is_completed": True})

    # Someone else's rename lands before our echo, still carrying the old completion state
    view.apply(event("tasks", "UPDATE", new=task(title="Oat milk", is_completed=False)))

    row = view.find_row("tasks", "t1")
    assert row["is_completed"] is True
    assert row["title"] == "Oat milk"
    assert len(view.pending) == 1


def test_pending_mutation_expires(view, clock):
    view.load(lists=[shared_list(permission="edit", tasks=[task()])])
    view.apply_local("tasks", "t1", {"is_completed": True})

    clock.now = 6
    view.apply(event("tasks", "UPDATE", new=task(is_completed=False)))

    assert view.find_row("tasks", "t1")["is_completed"] is False
    assert len(view.pending) == 0


def test_rollback_restores_previous_values(view):
    view.load(lists=[shared_list(permission="edit", tasks=[task()])])

    mutation = view.apply_local("tasks", "t1", {"is_completed": True, "completed_by": ME})
    view.rollback(mutation)

    row = view.find_row("tasks", "t1")
    assert row["is_completed"] is False
    assert row["completed_by"] is None
    assert len(view.pending) == 0


def test_failed_later_change_falls_back_to_the_earlier_pending_one(view):
    view.load(lists=[shared_list(permission="edit", tasks=[task()])])

    first = view.apply_local("tasks", "t1", {"title": "Bread"})
    second = view.apply_local("tasks", "t1", {"title": "Butter"})
    view.rollback(second)
    assert view.find_row("tasks", "t1")["title"] == "Bread"
    assert view.pending.get("tasks", "t1").fields == {"title": "Bread"}

    view.rollback(first)
    assert view.find_row("tasks", "t1")["title"] == "Milk"
    assert len(view.pending) == 0


def test_failed_earlier_change_keeps_later_change_protected(view):
    view.load(lists=[shared_list(permission="edit", tasks=[task()])])

    first = view.apply_local("tasks", "t1", {"title": "Bread", "priority": "high"})
    view.apply_local("tasks", "t1", {"title": "Butter", "is_completed": True})
    view.rollback(first)

    row = view.find_row("tasks", "t1")
    assert row["title"] == "Butter"
    assert row["is_completed"] is True
    assert row["priority"] is None
    assert view.pending.get("tasks", "t1").fields == {"title": "Butter", "is_completed": True}

    # A stale update still carrying the old values does not undo the surviving change
    view.apply(event("tasks", "UPDATE", new=task(title="Milk", is_completed=False, priority="low")))
    row = view.find_row("tasks", "t1")
    assert row["title"] == "Butter"
    assert row["is_completed"] is True
    assert row["priority"] == "low"


def test_later_change_rolls_back_past_an_earlier_failed_one(view):
    view.load(lists=[shared_list(permission="edit", tasks=[task()])])

    first = view.apply_local("tasks", "t1", {"title": "Bread"})
    second = view.apply_local("tasks", "t1", {"title": "Butter"})
    view.rollback(first)
    view.rollback(second)

    assert view.find_row("tasks", "t1")["title"] == "Milk"
    assert len(view.pending) == 0


def test_local_delete_rolls_back_and_ignores_stale_updates(view):
    view.load(lists=[shared_list(permission="edit", tasks=[task()])])

    mutation = view.apply_local_delete("tasks", "t1")
    assert view.apply(event("tasks", "UPDATE", new=task(title="Late"))) is False
    assert view.find_row("tasks", "t1") is None

    view.rollback(mutation)
    assert view.find_row("tasks", "t1")["title"] == "Milk"


def test_confirmed_insert_makes_echo_a_no_op(view):
    view.load(lists=[shared_list(permission="edit")])

    assert view.apply_confirmed_insert("tasks", task("t7")) is True
    assert view.apply(event("tasks", "INSERT", new=task("t7"))) is False
