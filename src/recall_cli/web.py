"""HTTP API over the event store, the search composer and the graph builder."""

from collections.abc import Iterator
from pathlib import Path
from typing import Optional

import structlog
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .db import Store
from .errors import RecallError
from .graph import build_graph
from .search import SearchOptions, search


logger = structlog.get_logger(__name__)

DEFAULT_PORT = 3141


def create_app(db_path: str | Path | None = None) -> FastAPI:
    """Build the API. Each request opens its own store handle and closes it on exit."""
    app = FastAPI(title="recall")
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["GET"])

    def get_store() -> Iterator[Store]:
        store = Store.open(db_path)
        try:
            yield store
        finally:
            store.close()

    @app.exception_handler(RecallError)
    async def recall_error_handler(request: Request, exc: RecallError) -> JSONResponse:
        logger.error("web.request_failed", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=500, content={"detail": "internal server error"})

    @app.get("/api/sessions")
    def list_sessions(
        limit: int = Query(200, ge=0),
        offset: int = Query(0, ge=0),
        store: Store = Depends(get_store),
    ) -> dict:
        overviews = store.session_overviews(limit, offset)
        return {"sessions": [o.model_dump() for o in overviews]}

    @app.get("/api/commands")
    def list_commands(
        session_id: Optional[str] = None,
        limit: int = Query(100, ge=0),
        store: Store = Depends(get_store),
    ) -> dict:
        if session_id is not None:
            commands = store.commands_in_session(session_id)
        else:
            commands = store.recent_commands(limit)
        return {"commands": [c.model_dump() for c in commands]}

    @app.get("/api/search")
    def search_commands(
        q: str,
        limit: int = Query(50, ge=0),
        repo: Optional[str] = None,
        dir: Optional[str] = None,
        failed: bool = False,
        store: Store = Depends(get_store),
    ) -> dict:
        opts = SearchOptions(query=q, repo=repo, dir=dir, failed_only=failed, limit=limit)
        results = search(store, opts)
        return {"results": [{**r.command.model_dump(), "rank": r.rank} for r in results]}

    @app.get("/api/stats")
    def stats(store: Store = Depends(get_store)) -> dict:
        return store.stats().model_dump()

    @app.get("/api/graph")
    def graph(store: Store = Depends(get_store)) -> dict:
        return build_graph(store).model_dump()

    return app


def serve(db_path: str | Path | None = None, port: int = DEFAULT_PORT) -> None:
    import uvicorn

    logger.info("web.starting", port=port)
    uvicorn.run(create_app(db_path), host="127.0.0.1", port=port, log_level="warning")
