from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest

from voicenote.data.dictionary import PhraseDictionary
from voicenote.data.store import NoteStore
from voicenote.search.service import SearchService


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "data" / "transcriptions.db")


@pytest.fixture
def store(db_path: str) -> Generator[NoteStore, None, None]:
    note_store = NoteStore(db_path)
    yield note_store
    note_store.close()


@pytest.fixture
def search_service(store: NoteStore) -> SearchService:
    return SearchService(store)


@pytest.fixture
def dictionary(store: NoteStore) -> PhraseDictionary:
    return PhraseDictionary(store)
