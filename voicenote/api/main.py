from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from voicenote.config import Config
from voicenote.data.dictionary import PhraseDictionary
from voicenote.data.errors import DuplicatePhraseError
from voicenote.data.export import ExportFormat
from voicenote.data.filters import NoteFilters
from voicenote.data.store import NoteStore
from voicenote.search.service import SearchService

logger = logging.getLogger(__name__)


class NoteOut(BaseModel):
    id: int
    raw_text: str
    formatted_text: str
    timestamp: int
    formatting_profile: str
    is_favorite: bool
    created_at: int


class NoteCreate(BaseModel):
    raw_text: str
    formatted_text: str
    timestamp: int
    formatting_profile: Optional[str] = None
    is_favorite: bool = False


class NoteUpdate(BaseModel):
    raw_text: Optional[str] = None
    formatted_text: Optional[str] = None
    formatting_profile: Optional[str] = None
    is_favorite: Optional[bool] = None


class NoteTagsUpdate(BaseModel):
    tags: List[str]


class TagOut(BaseModel):
    id: int
    name: str
    color: str
    use_count: int


class FiltersOut(BaseModel):
    tags: Optional[List[str]] = None
    is_favorite: Optional[bool] = None
    start_date: Optional[int] = None
    end_date: Optional[int] = None


class ParsedQueryOut(BaseModel):
    search_text: str
    filters: FiltersOut


class SearchOut(BaseModel):
    results: List[NoteOut]
    total: int
    has_more: bool


class StatsOut(BaseModel):
    total: int
    favorites: int
    total_tags: int


class ExportRequest(BaseModel):
    ids: List[int]
    format: ExportFormat = Field(default=ExportFormat.JSON)


class DictionaryEntryOut(BaseModel):
    id: int
    spoken_phrase: str
    replacement: str
    is_case_sensitive: bool
    is_enabled: bool
    created_at: int
    updated_at: int


class DictionaryEntryCreate(BaseModel):
    spoken_phrase: str
    replacement: str
    is_case_sensitive: bool = False


class DictionaryEntryUpdate(BaseModel):
    spoken_phrase: Optional[str] = None
    replacement: Optional[str] = None
    is_case_sensitive: Optional[bool] = None
    is_enabled: Optional[bool] = None


class ApplyRequest(BaseModel):
    text: str


class ApplyOut(BaseModel):
    text: str


def create_app(config: Optional[Config] = None) -> FastAPI:
    config = config or Config()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        store = NoteStore.from_config(config)
        app.state.store = store
        app.state.search = SearchService(store, page_size=config.search_page_size)
        app.state.dictionary = PhraseDictionary(store)
        try:
            yield
        finally:
            store.close()

    app = FastAPI(title="voicenote API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DuplicatePhraseError)
    def duplicate_phrase(_request: Request, exc: DuplicatePhraseError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    def invalid_value(_request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    # -- notes --

    @app.get("/notes", response_model=list[NoteOut])
    def list_notes(
        request: Request,
        favorite: Optional[bool] = None,
        tags: Optional[str] = Query(default=None),
        start_date: Optional[int] = None,
        end_date: Optional[int] = None,
        limit: Optional[int] = Query(default=None, ge=0),
        offset: int = Query(default=0, ge=0),
    ) -> list[NoteOut]:
        filters = NoteFilters(
            tags=_parse_tags(tags),
            is_favorite=favorite,
            start_date=start_date,
            end_date=end_date,
        )
        notes = _store(request).list_notes(filters, limit=limit, offset=offset)
        return [NoteOut(**note) for note in notes]

    @app.post("/notes", response_model=NoteOut)
    def create_note(request: Request, payload: NoteCreate) -> NoteOut:
        store = _store(request)
        note_id = store.insert_note(**payload.model_dump())
        return NoteOut(**_require_note(store, note_id))

    @app.get("/notes/{note_id}", response_model=NoteOut)
    def get_note(request: Request, note_id: int) -> NoteOut:
        return NoteOut(**_require_note(_store(request), note_id))

    @app.patch("/notes/{note_id}")
    def update_note(request: Request, note_id: int, payload: NoteUpdate) -> dict:
        _store(request).update_note(note_id, **payload.model_dump(exclude_none=True))
        return {"status": "ok"}

    @app.delete("/notes/{note_id}")
    def delete_note(request: Request, note_id: int) -> dict:
        _store(request).delete_note(note_id)
        return {"status": "deleted"}

    @app.post("/notes/{note_id}/favorite")
    def toggle_favorite(request: Request, note_id: int) -> dict:
        return {"is_favorite": _store(request).toggle_favorite(note_id)}

    @app.get("/notes/{note_id}/tags", response_model=list[TagOut])
    def get_note_tags(request: Request, note_id: int) -> list[TagOut]:
        return [TagOut(**tag) for tag in _store(request).get_note_tags(note_id)]

    @app.put("/notes/{note_id}/tags")
    def set_note_tags(request: Request, note_id: int, payload: NoteTagsUpdate) -> dict:
        cleaned = [name.strip() for name in payload.tags if name.strip()]
        _store(request).set_note_tags(note_id, cleaned)
        return {"status": "ok"}

    @app.get("/tags", response_model=list[TagOut])
    def list_tags(request: Request) -> list[TagOut]:
        return [TagOut(**tag) for tag in _store(request).list_tags()]

    # -- search --

    @app.get("/search", response_model=SearchOut)
    def search(
        request: Request,
        q: str = "",
        favorite: Optional[bool] = None,
        tags: Optional[str] = Query(default=None),
        start_date: Optional[int] = None,
        end_date: Optional[int] = None,
        limit: Optional[int] = Query(default=None, ge=0),
        offset: int = Query(default=0, ge=0),
    ) -> SearchOut:
        filters = NoteFilters(
            tags=_parse_tags(tags),
            is_favorite=favorite,
            start_date=start_date,
            end_date=end_date,
        )
        result = request.app.state.search.search(
            q, filters, limit=limit, offset=offset
        )
        return SearchOut(
            results=[NoteOut(**note) for note in result.results],
            total=result.total,
            has_more=result.has_more,
        )

    @app.get("/search/parse", response_model=ParsedQueryOut)
    def parse_query(request: Request, q: str = "") -> ParsedQueryOut:
        parsed = request.app.state.search.parse_query(q)
        return ParsedQueryOut(
            search_text=parsed.search_text,
            filters=FiltersOut(**vars(parsed.filters)),
        )

    @app.get("/stats", response_model=StatsOut)
    def stats(request: Request) -> StatsOut:
        return StatsOut(**_store(request).stats())

    # -- lifecycle --

    @app.post("/export")
    def export_notes(request: Request, payload: ExportRequest) -> dict:
        data = _store(request).export_notes(payload.ids, payload.format)
        return {"format": payload.format.value, "data": data}

    @app.post("/backup")
    def backup(request: Request) -> dict:
        return {"success": _store(request).backup()}

    @app.post("/restore")
    def restore(request: Request) -> dict:
        return {"success": _store(request).restore()}

    @app.post("/vacuum")
    def vacuum(request: Request) -> dict:
        _store(request).vacuum()
        return {"status": "ok"}

    # -- dictionary --

    @app.get("/dictionary", response_model=list[DictionaryEntryOut])
    def list_entries(request: Request) -> list[DictionaryEntryOut]:
        entries = _dictionary(request).list_entries()
        return [DictionaryEntryOut(**entry) for entry in entries]

    @app.post("/dictionary", response_model=DictionaryEntryOut)
    def add_entry(
        request: Request, payload: DictionaryEntryCreate
    ) -> DictionaryEntryOut:
        dictionary = _dictionary(request)
        entry_id = dictionary.add_entry(**payload.model_dump())
        return DictionaryEntryOut(**_require_entry(dictionary, entry_id))

    @app.get("/dictionary/stats")
    def dictionary_stats(request: Request) -> dict:
        return _dictionary(request).stats()

    @app.post("/dictionary/apply", response_model=ApplyOut)
    def apply_replacements(request: Request, payload: ApplyRequest) -> ApplyOut:
        return ApplyOut(text=_dictionary(request).apply(payload.text))

    @app.get("/dictionary/{entry_id}", response_model=DictionaryEntryOut)
    def get_entry(request: Request, entry_id: int) -> DictionaryEntryOut:
        return DictionaryEntryOut(**_require_entry(_dictionary(request), entry_id))

    @app.patch("/dictionary/{entry_id}")
    def update_entry(
        request: Request, entry_id: int, payload: DictionaryEntryUpdate
    ) -> dict:
        _dictionary(request).update_entry(
            entry_id, **payload.model_dump(exclude_none=True)
        )
        return {"status": "ok"}

    @app.delete("/dictionary/{entry_id}")
    def delete_entry(request: Request, entry_id: int) -> dict:
        _dictionary(request).delete_entry(entry_id)
        return {"status": "deleted"}

    @app.post("/dictionary/{entry_id}/toggle")
    def toggle_entry(request: Request, entry_id: int) -> dict:
        return {"is_enabled": _dictionary(request).toggle_enabled(entry_id)}

    return app


def _store(request: Request) -> NoteStore:
    return request.app.state.store


def _dictionary(request: Request) -> PhraseDictionary:
    return request.app.state.dictionary


def _require_note(store: NoteStore, note_id: int) -> dict:
    note = store.get_note(note_id)
    if not note:
        raise HTTPException(status_code=404, detail="Note not found")
    return note


def _require_entry(dictionary: PhraseDictionary, entry_id: int) -> dict:
    entry = dictionary.get_entry(entry_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Dictionary entry not found")
    return entry


def _parse_tags(tags: Optional[str]) -> Optional[list[str]]:
    if not tags:
        return None
    names = [item.strip() for item in tags.split(",") if item.strip()]
    return names or None
