# rpi_adapter/api/state_api.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from rpi_adapter.core.state import StateValue
from rpi_adapter.core.state_store import StateStore


class WriteRequest(BaseModel):
    val: Any


def _serialize_value(path: str, st: StateValue) -> dict:
    return {"path": path, "val": st.val, "ack": st.ack, "ts": st.ts, "lc": st.lc}


def create_state_router(store: StateStore) -> APIRouter:
    """
    Router z endpointami:
      GET  /state
      GET  /state/changes?since=N
      GET  /state/{path}
      POST /state/{path}     body {"val": ...}
      GET  /objects?prefix=
    """
    router = APIRouter(tags=["state"])

    @router.get("/state")
    async def get_all_states():
        states = await store.all_states()
        return {path: _serialize_value(path, st) for path, st in states.items()}

    @router.get("/state/changes")
    async def get_changes(since: int = Query(0, ge=0)):
        """
        Feed zmian. overflow=True znaczy, że klient zgubił część zmian
        (ring-bufor się przewinął) i powinien pobrać pełny /state.
        """
        changes, newest, overflow = store.changes_since(since)
        return {
            "newest": newest,
            "overflow": overflow,
            "changes": [vars(ch) for ch in changes],
        }

    @router.get("/state/{path}")
    async def get_state(path: str):
        st = await store.get_state(path)
        if st is None:
            raise HTTPException(status_code=404, detail=f"Unknown state '{path}'")
        return _serialize_value(path, st)

    @router.post("/state/{path}")
    async def write_state(path: str, body: WriteRequest):
        """
        Żądanie zapisu z zewnątrz. Trafia do magazynu z ack=False,
        adapter sam wystawi ack=True po zapisaniu linii.
        """
        obj = await store.get_object(path)
        if obj is None or obj.type != "state":
            raise HTTPException(status_code=404, detail=f"Unknown state '{path}'")
        if not obj.write:
            raise HTTPException(status_code=403, detail=f"State '{path}' is read-only")

        await store.request_write(path, body.val)

        st = await store.get_state(path)
        return _serialize_value(path, st)

    @router.get("/objects")
    async def list_objects(prefix: str = ""):
        result = {}
        for path in await store.list_objects(prefix):
            obj = await store.get_object(path)
            if obj is not None:
                result[path] = obj.to_dict()
        return result

    return router
