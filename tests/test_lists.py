from datetime import date, datetime

import pytest

from cotask.core.errors import ForbiddenError, NotFoundError, ValidationError
from cotask.modules.sharing.service import arrange


@pytest.fixture
def groceries(lists, alice):
    return lists.create(alice.id, {"title": "Groceries", "color": "emerald"})


def test_create_applies_defaults(groceries, alice):
    assert groceries.created_by == alice.id
    assert groceries.icon == "📋"
    assert groceries.color == "emerald"
    assert groceries.tasks == []


def test_add_task_defaults_and_listing(lists, groceries, alice):
    task = lists.add_task(groceries.id, alice.id, {"title": "  Milk ", "due_date": date(2026, 11, 1)})

    assert task.title == "Milk"
    assert task.priority == "medium"
    assert task.is_completed is False
    assert task.created_by == alice.id
    assert task.due_date == date(2026, 11, 1)
    assert [t.id for t in lists.list_tasks(groceries.id, alice.id)] == [task.id]
    assert [t.title for t in lists.get(groceries.id, alice.id).tasks] == ["Milk"]


def test_add_task_requires_title(lists, groceries, alice):
    with pytest.raises(ValidationError):
        lists.add_task(groceries.id, alice.id, {"title": "   "})


def test_toggle_sets_and_clears_completion(lists, groceries, alice, bob):
    lists.grant_share(groceries.id, alice.id, "bob", "edit")
    task = lists.add_task(groceries.id, alice.id, {"title": "Milk"})

    done = lists.toggle_task(task.id, bob.id)
    assert done.is_completed is True
    assert done.completed_by == bob.id
    assert done.completed_at is not None

    undone = lists.toggle_task(task.id, alice.id)
    assert undone.is_completed is False
    assert undone.completed_by is None
    assert undone.completed_at is None


def test_explicit_completion_is_idempotent(lists, groceries, alice):
    task = lists.add_task(groceries.id, alice.id, {"title": "Milk"})

    lists.toggle_task(task.id, alice.id, completed=True)
    again = lists.toggle_task(task.id, alice.id, completed=True)

    assert again.is_completed is True


def test_update_task_validates_priority(lists, groceries, alice):
    task = lists.add_task(groceries.id, alice.id, {"title": "Milk"})

    with pytest.raises(ValidationError):
        lists.update_task(task.id, alice.id, {"priority": "urgent"})

    updated = lists.update_task(task.id, alice.id, {"priority": "high", "description": "2 litres"})
    assert updated.priority == "high"
    assert updated.description == "2 litres"


def test_task_must_belong_to_the_given_list(lists, groceries, alice):
    other = lists.create(alice.id, {"title": "Chores"})
    task = lists.add_task(groceries.id, alice.id, {"title": "Milk"})

    with pytest.raises(NotFoundError):
        lists.update_task(task.id, alice.id, {"title": "Bread"}, list_id=other.id)


def test_viewer_cannot_touch_tasks(lists, groceries, alice, bob):
    lists.grant_share(groceries.id, alice.id, "bob", "view")
    task = lists.add_task(groceries.id, alice.id, {"title": "Milk"})

    assert [t.title for t in lists.list_tasks(groceries.id, bob.id)] == ["Milk"]
    with pytest.raises(ForbiddenError):
        lists.toggle_task(task.id, bob.id)
    with pytest.raises(ForbiddenError):
        lists.update_task(task.id, bob.id, {"title": "Bread"})
    with pytest.raises(ForbiddenError):
        lists.delete_task(task.id, bob.id)


def test_stranger_cannot_read_tasks(lists, groceries, carol):
    with pytest.raises(NotFoundError):
        lists.list_tasks(groceries.id, carol.id)


def test_delete_task(lists, supabase, groceries, alice):
    task = lists.add_task(groceries.id, alice.id, {"title": "Milk"})

    assert lists.delete_task(task.id, alice.id) is True
    assert supabase.rows("tasks") == []
    with pytest.raises(NotFoundError):
        lists.delete_task(task.id, alice.id)


def test_stats_cover_only_owned_lists(lists, groceries, alice, bob):
    milk = lists.add_task(groceries.id, alice.id, {"title": "Milk"})
    lists.add_task(groceries.id, alice.id, {"title": "Eggs"})
    lists.toggle_task(milk.id, alice.id)
    theirs = lists.create(bob.id, {"title": "Bob's"})
    lists.grant_share(theirs.id, bob.id, "alice", "edit")
    lists.add_task(theirs.id, alice.id, {"title": "Not counted"})

    stats = lists.stats(alice.id)

    assert stats == {
        "total_lists": 1,
        "archived_lists": 0,
        "total_tasks": 2,
        "completed_tasks": 1,
        "remaining_tasks": 1,
    }


def test_due_date_accepts_iso_strings_and_datetimes(lists, groceries, alice):
    task = lists.add_task(groceries.id, alice.id, {"title": "Milk", "due_date": "2026-11-01"})
    assert task.due_date == date(2026, 11, 1)

    task = lists.update_task(task.id, alice.id, {"due_date": datetime(2026, 12, 24, 18, 30)})
    assert task.due_date == date(2026, 12, 24)


@pytest.mark.parametrize("value", [5, "next week", ["2026-11-01"], {"day": 1}])
def test_malformed_due_date_is_a_validation_error(lists, supabase, groceries, alice, value):
    task = lists.add_task(groceries.id, alice.id, {"title": "Milk"})
    calls = len(supabase.calls)

    with pytest.raises(ValidationError):
        lists.update_task(task.id, alice.id, {"due_date": value})
    with pytest.raises(ValidationError):
        lists.add_task(groceries.id, alice.id, {"title": "Eggs", "due_date": value})
    assert len(supabase.calls) == calls


def test_non_text_content_is_a_validation_error(lists, groceries, alice):
    with pytest.raises(ValidationError):
        lists.update_content(groceries.id, alice.id, {"title": 42})
    with pytest.raises(ValidationError):
        lists.add_task(groceries.id, alice.id, {"title": "Milk", "description": ["not", "text"]})


def test_browse_searches_titles_and_puts_pinned_first(lists, alice, bob):
    bread = lists.create(alice.id, {"title": "bread run"})
    chores = lists.create(alice.id, {"title": "Chores"})
    apples = lists.create(alice.id, {"title": "Apple picking"})
    shared = lists.create(bob.id, {"title": "Bob's bread"})
    lists.grant_share(shared.id, bob.id, "alice", "view")
    lists.set_pinned(chores.id, alice.id, True)
    lists.set_archived(apples.id, alice.id, True)

    assert [l.title for l in lists.browse(alice.id, "BREAD", "name")] == ["Bob's bread", "bread run"]
    assert [l.title for l in lists.browse(alice.id, sort="name")] == ["Chores", "Bob's bread", "bread run"]
    assert "Apple picking" in [l.title for l in lists.browse(alice.id, sort="name", include_archived=True)]


def test_browse_by_completion_uses_attached_tasks(lists, alice):
    half = lists.create(alice.id, {"title": "Half"})
    done = lists.create(alice.id, {"title": "Done"})
    lists.create(alice.id, {"title": "Empty"})
    lists.toggle_task(lists.add_task(done.id, alice.id, {"title": "Sweep"}).id, alice.id)
    lists.toggle_task(lists.add_task(half.id, alice.id, {"title": "Bread"}).id, alice.id)
    lists.add_task(half.id, alice.id, {"title": "Butter"})

    assert [l.title for l in lists.browse(alice.id, sort="completion")] == ["Done", "Half", "Empty"]


def test_arrange_orders_by_created_and_modified_time():
    rows = [
        {"title": "a", "created_at": "2026-01-01T00:00:01", "updated_at": "2026-01-03T00:00:00"},
        {"title": "b", "created_at": "2026-01-01T00:00:02", "updated_at": None},
        {"title": "c", "created_at": "2026-01-01T00:00:03", "updated_at": "2026-01-02T00:00:00", "is_pinned": True},
    ]

    assert [r["title"] for r in arrange(rows, sort="created")] == ["c", "b", "a"]
    assert [r["title"] for r in arrange(rows, sort="modified")] == ["c", "a", "b"]
    assert [r["title"] for r in arrange(rows, "A", "modified")] == ["a"]


def test_arrange_rejects_unknown_sort():
    with pytest.raises(ValidationError):
        arrange([], sort="popularity")
