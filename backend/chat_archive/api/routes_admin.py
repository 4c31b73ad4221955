"""Administrative routes for Chat Archive."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from chat_archive.api.dependencies import get_cursor_store, get_store
from chat_archive.core.metrics import metrics_response
from chat_archive.models.dto import (
    ChatResponse,
    CursorResponse,
    DeleteResponse,
    FolderRequest,
    FolderResponse,
)
from chat_archive.storage.store import ArchiveStore
from chat_archive.sync.cursor_store import SyncCursorStore

router = APIRouter()


@router.get("/chats", response_model=list[ChatResponse], summary="List archived chats")
def list_chats(store: ArchiveStore = Depends(get_store)) -> list[ChatResponse]:
    return [ChatResponse.from_chat(chat) for chat in store.list_chats()]


@router.delete("/chats/{chat_id}", response_model=DeleteResponse, summary="Remove a chat and its messages")
def delete_chat(chat_id: int, store: ArchiveStore = Depends(get_store)) -> DeleteResponse:
    deleted = store.delete_chat(chat_id)
    return DeleteResponse(status="ok" if deleted else "noop", deleted=deleted)


@router.get("/chats/{chat_id}/cursor", response_model=CursorResponse, summary="Incremental sync position")
def get_cursor(chat_id: int, cursors: SyncCursorStore = Depends(get_cursor_store)) -> CursorResponse:
    cursor = cursors.get(chat_id)
    if cursor is None:
        raise HTTPException(status_code=404, detail="No sync cursor for chat")
    return CursorResponse.from_cursor(cursor)


@router.delete("/chats/{chat_id}/cursor", response_model=DeleteResponse, summary="Forget the sync position")
def clear_cursor(chat_id: int, cursors: SyncCursorStore = Depends(get_cursor_store)) -> DeleteResponse:
    removed = cursors.clear(chat_id)
    return DeleteResponse(status="ok" if removed else "noop", deleted=int(removed))


@router.put("/folders/{folder_id}", response_model=FolderResponse, summary="Create or replace a folder")
def put_folder(
    folder_id: int,
    request: FolderRequest,
    store: ArchiveStore = Depends(get_store),
) -> FolderResponse:
    store.upsert_folder(folder_id, request.title, request.chat_ids)
    return FolderResponse(id=folder_id, title=request.title, chat_ids=store.chat_ids_in_folder(folder_id))


@router.get("/metrics", summary="Prometheus metrics")
async def get_metrics():
    return metrics_response()


__all__ = ["router"]
