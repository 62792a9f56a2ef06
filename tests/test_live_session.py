import asyncio
import threading

import pytest

from cotask.core.errors import ForbiddenError, TransientStoreError, ValidationError
from cotask.modules.realtime.reconciler import PendingMutations
from cotask.modules.realtime.session import LiveSession
from cotask.modules.sharing.models import LIST_KIND


def live(user, broker, lists, notes, relationships, snapshots=None, **kwargs):
    async def collect(snapshot):
        if snapshots is not None:
            snapshots.append(snapshot)

    return LiveSession(user.id, broker, lists, notes, relationships, on_change=collect, **kwargs)


def titles(list_row):
    return [t["title"] for t in list_row["tasks"]]


def test_upgraded_collaborator_task_reaches_owner_view(lists, notes, relationships, broker, alice, bob):
    groceries = lists.create(alice.id, {"title": "Groceries"})
    grant = lists.grant_share(groceries.id, alice.id, "bob", "view")

    async def scenario():
        async with live(alice, broker, lists, notes, relationships) as session:
            with pytest.raises(ForbiddenError):
                lists.add_task(groceries.id, bob.id, {"title": "Milk"})
            lists.update_grant_permission(grant.id, alice.id, "edit")
            await asyncio.to_thread(lists.add_task, groceries.id, bob.id, {"title": "Milk"})
            await session.wait_idle()
            return session.view.snapshot()

    snapshot = asyncio.run(scenario())

    [owned] = snapshot["lists"]["owned"]
    assert owned["id"] == groceries.id
    assert titles(owned) == ["Milk"]


def test_share_and_revoke_follow_the_grantee(lists, notes, relationships, broker, alice, bob):
    groceries = lists.create(alice.id, {"title": "Groceries"})

    async def scenario():
        async with live(bob, broker, lists, notes, relationships) as session:
            assert session.view.snapshot()["lists"]["shared"] == []

            grant = lists.grant_share(groceries.id, alice.id, "bob", "view")
            await session.wait_idle()
            [shared] = session.view.snapshot()["lists"]["shared"]
            assert shared["permission"] == "view"
            assert ("tasks", f"list_id=in.({groceries.id})") in session.subscription_filters

            # The tasks subscription was re-scoped, so the owner's new task arrives
            lists.add_task(groceries.id, alice.id, {"title": "Eggs"})
            await session.wait_idle()
            assert titles(session.view.snapshot()["lists"]["shared"][0]) == ["Eggs"]

            lists.revoke_grant(grant.id, alice.id)
            await session.wait_idle()
            assert session.view.snapshot()["lists"]["shared"] == []
            assert not any(table == "tasks" for table, _ in session.subscription_filters)

    asyncio.run(scenario())


def test_connection_request_updates_recipient_view(lists, notes, relationships, broker, alice, bob):
    snapshots = []

    async def scenario():
        async with live(bob, broker, lists, notes, relationships, snapshots) as session:
            rel = relationships.request_by_username(alice.id, "bob")
            await session.wait_idle()
            assert session.view.snapshot()["pending_received"] == 1

            relationships.accept(rel.id, bob.id)
            await session.wait_idle()
            snapshot = session.view.snapshot()
            assert snapshot["pending_received"] == 0
            assert [r["status"] for r in snapshot["relationships"]] == ["friend"]

    asyncio.run(scenario())

    assert [s["pending_received"] for s in snapshots] == [1, 0]


def test_optimistic_toggle_is_confirmed_by_echo(lists, notes, relationships, broker, alice):
    groceries = lists.create(alice.id, {"title": "Groceries"})
    task = lists.add_task(groceries.id, alice.id, {"title": "Milk"})
    snapshots = []

    async def scenario():
        async with live(alice, broker, lists, notes, relationships, snapshots) as session:
            await session.toggle_task(task.id)
            # Applied locally before the store confirmed it
            assert snapshots[0]["lists"]["owned"][0]["tasks"][0]["is_completed"] is True
            await session.wait_idle()
            return session

    session = asyncio.run(scenario())

    assert len(session.view.pending) == 0
    assert session.view.find_row("tasks", task.id)["completed_by"] == alice.id


def test_failed_store_call_rolls_back(lists, notes, relationships, broker, supabase, alice):
    groceries = lists.create(alice.id, {"title": "Groceries"})
    task = lists.add_task(groceries.id, alice.id, {"title": "Milk"})
    snapshots = []

    async def scenario():
        async with live(alice, broker, lists, notes, relationships, snapshots) as session:
            supabase.fail_next("tasks", "update")
            with pytest.raises(TransientStoreError):
                await session.toggle_task(task.id)
            return session.view.find_row("tasks", task.id)

    row = asyncio.run(scenario())

    assert row["is_completed"] is False
    assert snapshots[0]["lists"]["owned"][0]["tasks"][0]["is_completed"] is True
    assert snapshots[-1]["lists"]["owned"][0]["tasks"][0]["is_completed"] is False


def test_viewer_command_is_refused_without_store_call(lists, notes, relationships, broker, supabase, alice, bob):
    groceries = lists.create(alice.id, {"title": "Groceries"})
    lists.grant_share(groceries.id, alice.id, "bob", "view")
    task = lists.add_task(groceries.id, alice.id, {"title": "Milk"})

    async def scenario():
        async with live(bob, broker, lists, notes, relationships) as session:
            calls = len(supabase.calls)
            with pytest.raises(ForbiddenError):
                await session.toggle_task(task.id)
            with pytest.raises(ForbiddenError):
                await session.set_pinned(LIST_KIND, groceries.id, True)
            assert len(supabase.calls) == calls

    asyncio.run(scenario())


def test_add_task_and_pin_through_session(lists, notes, relationships, broker, alice):
    groceries = lists.create(alice.id, {"title": "Groceries"})

    async def scenario():
        async with live(alice, broker, lists, notes, relationships) as session:
            await session.add_task(groceries.id, {"title": "Bread"})
            await session.set_pinned(LIST_KIND, groceries.id)
            await session.wait_idle()
            return session.view.snapshot()

    [owned] = asyncio.run(scenario())["lists"]["owned"]

    assert titles(owned) == ["Bread"]
    assert owned["is_pinned"] is True


def test_subscriptions_closed_on_every_exit(lists, notes, relationships, broker, alice):
    async def failing():
        async with live(alice, broker, lists, notes, relationships):
            assert broker.subscription_count > 0
            raise RuntimeError("socket dropped")

    with pytest.raises(RuntimeError):
        asyncio.run(failing())
    assert broker.subscription_count == 0


def test_expired_pending_mutation_yields_to_next_notification(lists, notes, relationships, broker, alice):
    groceries = lists.create(alice.id, {"title": "Groceries"})
    task = lists.add_task(groceries.id, alice.id, {"title": "Milk"})
    now = [0.0]
    pending = PendingMutations(ttl_seconds=5, clock=lambda: now[0])

    async def scenario():
        async with live(alice, broker, lists, notes, relationships, pending=pending) as session:
            async with session._lock:
                session.view.apply_local("tasks", task.id, {"title": "Never saved"})
            now[0] = 10
            lists.update_task(task.id, alice.id, {"description": "from elsewhere"})
            await session.wait_idle()
            return session.view.find_row("tasks", task.id)

    row = asyncio.run(scenario())

    assert row["title"] == "Milk"
    assert row["description"] == "from elsewhere"


def test_snapshot_waits_for_fold_in_progress(lists, notes, relationships, broker, alice, bob):
    groceries = lists.create(alice.id, {"title": "Groceries"})
    snapshots = []

    async def scenario():
        async with live(bob, broker, lists, notes, relationships, snapshots) as session:
            entered = threading.Event()
            release = threading.Event()
            fetch = session.view.loader

            def slow_fetch(kind_name, resource_id):
                entered.set()
                release.wait(5)
                return fetch(kind_name, resource_id)

            session.view.loader = slow_fetch
            lists.grant_share(groceries.id, alice.id, "bob", "view")
            assert await asyncio.to_thread(entered.wait, 5)

            pushing = asyncio.create_task(session.push())
            await asyncio.sleep(0.05)
            assert not pushing.done()

            release.set()
            await pushing
            await session.wait_idle()

    asyncio.run(scenario())

    assert snapshots
    assert all(len(s["lists"]["shared"]) == 1 for s in snapshots)


def test_malformed_task_fields_are_refused_before_local_apply(lists, notes, relationships, broker, supabase, alice):
    groceries = lists.create(alice.id, {"title": "Groceries"})
    task = lists.add_task(groceries.id, alice.id, {"title": "Milk"})

    async def scenario():
        async with live(alice, broker, lists, notes, relationships) as session:
            calls = len(supabase.calls)
            with pytest.raises(ValidationError):
                await session.update_task(task.id, {"due_date": 5})
            with pytest.raises(ValidationError):
                await session.add_task(groceries.id, {"title": "Eggs", "due_date": "next week"})
            assert len(supabase.calls) == calls
            return session.view.find_row("tasks", task.id)

    row = asyncio.run(scenario())

    assert row.get("due_date") is None
    assert len(supabase.rows("tasks")) == 1
