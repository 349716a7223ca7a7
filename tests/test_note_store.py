from __future__ import annotations

import pytest

from voicenote.data.errors import StoreError
from voicenote.data.filters import NoteFilters
from voicenote.data.store import NoteStore


def _seed(store: NoteStore) -> list[int]:
    return [
        store.insert_note("First note", "First note", 1000, is_favorite=True),
        store.insert_note("Second note", "Second note", 2000),
        store.insert_note("Third note", "Third note", 3000, is_favorite=True),
    ]


def test_insert_and_get(store: NoteStore) -> None:
    note_id = store.insert_note("hello world", "Hello world!", 1234)
    assert note_id > 0

    note = store.get_note(note_id)
    assert note is not None
    assert note["id"] == note_id
    assert note["raw_text"] == "hello world"
    assert note["formatted_text"] == "Hello world!"
    assert note["timestamp"] == 1234
    assert note["formatting_profile"] == "casual"
    assert note["is_favorite"] == 0
    assert note["created_at"] > 0


def test_default_profile_comes_from_constructor(db_path: str) -> None:
    with NoteStore(db_path, default_profile="email") as store:
        note_id = store.insert_note("a", "a", 1)
        other_id = store.insert_note("b", "b", 2, formatting_profile="notes")
        assert store.get_note(note_id)["formatting_profile"] == "email"
        assert store.get_note(other_id)["formatting_profile"] == "notes"


def test_missing_required_fields_rejected(store: NoteStore) -> None:
    with pytest.raises(ValueError):
        store.insert_note(None, "text", 1)  # type: ignore[arg-type]


def test_get_missing_returns_none(store: NoteStore) -> None:
    assert store.get_note(999) is None


def test_ids_are_never_reused(store: NoteStore) -> None:
    first = store.insert_note("a", "a", 1)
    store.delete_note(first)
    second = store.insert_note("b", "b", 2)
    assert second > first


def test_update_only_touches_given_fields(store: NoteStore) -> None:
    note_id = store.insert_note("Original text", "Original formatted text", 5000)
    before = store.get_note(note_id)
    assert before is not None

    store.update_note(note_id, formatted_text="Updated formatted text")

    after = store.get_note(note_id)
    assert after is not None
    assert after["formatted_text"] == "Updated formatted text"
    assert after["raw_text"] == "Original text"
    assert after["timestamp"] == 5000
    assert after["created_at"] == before["created_at"]

    store.update_note(note_id, formatting_profile="email", is_favorite=True)
    after = store.get_note(note_id)
    assert after is not None
    assert after["formatting_profile"] == "email"
    assert after["is_favorite"] == 1


def test_update_rejects_unknown_fields(store: NoteStore) -> None:
    note_id = store.insert_note("a", "a", 1)
    with pytest.raises(ValueError, match="created_at"):
        store.update_note(note_id, created_at=0)


def test_update_and_delete_missing_ids_are_no_ops(store: NoteStore) -> None:
    _seed(store)
    stats_before = store.stats()
    notes_before = store.list_notes()

    store.update_note(999999, formatted_text="changed", is_favorite=True)
    store.delete_note(999999)
    assert store.toggle_favorite(999999) is False

    assert store.stats() == stats_before
    assert store.list_notes() == notes_before


def test_delete(store: NoteStore) -> None:
    note_id = store.insert_note("To be deleted", "To be deleted", 1)
    assert store.stats()["total"] == 1

    store.delete_note(note_id)

    assert store.stats()["total"] == 0
    assert store.get_note(note_id) is None
    assert store.search_notes("deleted") == []


def test_toggle_favorite(store: NoteStore) -> None:
    note_id = store.insert_note("Favorite test", "Favorite test", 1)
    assert store.get_note(note_id)["is_favorite"] == 0

    assert store.toggle_favorite(note_id) is True
    assert store.get_note(note_id)["is_favorite"] == 1

    assert store.toggle_favorite(note_id) is False
    assert store.get_note(note_id)["is_favorite"] == 0


def test_list_newest_first(store: NoteStore) -> None:
    _seed(store)
    texts = [n["formatted_text"] for n in store.list_notes()]
    assert texts == ["Third note", "Second note", "First note"]


def test_list_filters_by_favorite(store: NoteStore) -> None:
    _seed(store)
    favorites = store.list_notes(NoteFilters(is_favorite=True))
    assert len(favorites) == 2
    assert all(n["is_favorite"] == 1 for n in favorites)

    others = store.list_notes(NoteFilters(is_favorite=False))
    assert [n["formatted_text"] for n in others] == ["Second note"]


def test_list_date_range_is_inclusive(store: NoteStore) -> None:
    _seed(store)
    notes = store.list_notes(NoteFilters(start_date=2000, end_date=3000))
    assert [n["timestamp"] for n in notes] == [3000, 2000]

    assert store.list_notes(NoteFilters(start_date=0)) != []
    assert store.list_notes(NoteFilters(end_date=999)) == []


def test_list_pagination(store: NoteStore) -> None:
    _seed(store)
    page1 = store.list_notes(limit=2, offset=0)
    page2 = store.list_notes(limit=2, offset=2)

    assert len(page1) == 2
    assert len(page2) == 1
    assert page1[0]["id"] != page2[0]["id"]
    assert len(store.list_notes(offset=1)) == 2
    assert store.list_notes(limit=0) == []


def test_negative_pagination_rejected(store: NoteStore) -> None:
    with pytest.raises(ValueError):
        store.list_notes(limit=-1)
    with pytest.raises(ValueError):
        store.list_notes(offset=-1)


def test_tag_filter_matches_any_listed_tag(store: NoteStore) -> None:
    work_id, home_id, untagged_id = _seed(store)
    store.set_note_tags(work_id, ["Work", "urgent"])
    store.set_note_tags(home_id, ["home"])

    notes = store.list_notes(NoteFilters(tags=["work", "home"]))
    assert {n["id"] for n in notes} == {work_id, home_id}

    notes = store.list_notes(NoteFilters(tags=["URGENT"]))
    assert [n["id"] for n in notes] == [work_id]

    assert store.list_notes(NoteFilters(tags=["nothing"])) == []
    assert untagged_id in {n["id"] for n in store.list_notes(NoteFilters(tags=[]))}


def test_tags_and_usage_counts(store: NoteStore) -> None:
    note1 = store.insert_note("Note 1", "Content 1", 1)
    note2 = store.insert_note("Note 2", "Content 2", 2)
    store.set_note_tags(note1, ["python", "testing"])
    store.set_note_tags(note2, ["Python"])

    tags = {t["name"]: t for t in store.list_tags()}
    assert set(tags) == {"python", "testing"}
    assert tags["python"]["use_count"] == 2
    assert tags["testing"]["use_count"] == 1
    assert tags["python"]["color"] == "#6366f1"
    assert store.get_tag_usage_count(tags["python"]["id"]) == 2
    assert store.list_tags()[0]["name"] == "python"

    store.delete_note(note1)

    tags = {t["name"]: t for t in store.list_tags()}
    assert tags["python"]["use_count"] == 1
    assert tags["testing"]["use_count"] == 0
    assert store.stats()["total_tags"] == 2


def test_delete_tag_cascades(store: NoteStore) -> None:
    note_id = store.insert_note("Note", "Note", 1)
    store.set_note_tags(note_id, ["python", "testing"])
    testing_id = next(t["id"] for t in store.list_tags() if t["name"] == "testing")

    store.delete_tag(testing_id)

    assert [t["name"] for t in store.get_note_tags(note_id)] == ["python"]
    assert store.list_notes(NoteFilters(tags=["testing"])) == []


def test_rename_tag(store: NoteStore) -> None:
    note_id = store.insert_note("Note", "Note", 1)
    store.set_note_tags(note_id, ["python", "testing"])
    python_id = next(t["id"] for t in store.list_tags() if t["name"] == "python")

    store.rename_tag(python_id, "Python3")

    assert {t["name"] for t in store.get_note_tags(note_id)} == {"python3", "testing"}

    with pytest.raises(ValueError, match="already exists"):
        store.rename_tag(python_id, "testing")
    with pytest.raises(ValueError, match="cannot be empty"):
        store.rename_tag(python_id, "  ")


def test_set_tags_on_missing_note_is_a_no_op(store: NoteStore) -> None:
    store.set_note_tags(424242, ["work"])
    assert store.list_tags() == []


def test_stats(store: NoteStore) -> None:
    assert store.stats() == {"total": 0, "favorites": 0, "total_tags": 0}

    note_id = store.insert_note("Note 1", "Note 1", 1, is_favorite=True)
    store.insert_note("Note 2", "Note 2", 2)
    store.insert_note("Note 3", "Note 3", 3, is_favorite=True)
    store.set_note_tags(note_id, ["a", "b"])

    assert store.stats() == {"total": 3, "favorites": 2, "total_tags": 2}
    assert store.count_notes() == 3


def test_failed_transaction_leaves_no_trace(store: NoteStore) -> None:
    with pytest.raises(RuntimeError):
        with store.transaction() as conn:
            conn.execute(
                "INSERT INTO notes(raw_text, formatted_text, timestamp, created_at) "
                "VALUES ('ghost', 'ghost', 1, 1)"
            )
            raise RuntimeError("boom")

    assert store.count_notes() == 0
    assert store.search_notes("ghost") == []
    assert store.check_search_index() is True


def test_operations_after_close_raise(db_path: str) -> None:
    store = NoteStore(db_path)
    store.close()
    store.close()

    assert store.closed
    with pytest.raises(StoreError):
        store.get_note(1)


def test_update_rejects_null_favorite(store: NoteStore) -> None:
    note_id = store.insert_note("a", "a", 1, is_favorite=True)

    with pytest.raises(ValueError, match="is_favorite"):
        store.update_note(note_id, is_favorite=None)

    assert store.get_note(note_id)["is_favorite"] == 1
