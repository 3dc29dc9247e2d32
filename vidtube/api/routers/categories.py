from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from vidtube.api.dependencies import require_viewer
from vidtube.storage.sqlite_store import SQLiteStore


router = APIRouter()


class CreateCategoryRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=1000)


@router.get("/categories")
def list_categories() -> dict[str, Any]:
    store = SQLiteStore()
    try:
        return {"items": store.list_categories()}
    finally:
        store.close()


@router.post("/categories", status_code=201)
def create_category(req: CreateCategoryRequest, request: Request) -> dict[str, Any]:
    store = SQLiteStore()
    try:
        require_viewer(request, store)
        rec = store.create_category(name=req.name.strip(), description=req.description)
        return {
            "category": {
                "category_id": rec.category_id,
                "name": rec.name,
                "description": rec.description,
                "created_at": rec.created_at,
            }
        }
    finally:
        store.close()
