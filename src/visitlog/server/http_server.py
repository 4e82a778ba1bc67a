"""visitlog HTTP server -- JSON surface over a HistoryManager.

Lets collaborators in other processes (tab-close hooks, a search UI,
a privacy-settings page) record and query history over local HTTP.
SQLite calls are blocking, so every handler hops to Starlette's threadpool;
each read borrows a pooled snapshot connection.

Dependencies: starlette (app), uvicorn (server).
"""

import logging
from functools import wraps
from typing import Optional

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from visitlog import __version__
from visitlog.errors import InvalidQuery, NotFound, StorageError, ValidationError
from visitlog.manager import HistoryManager
from visitlog.models import DEFAULT_SEARCH_LIMIT, SearchQuery

logger = logging.getLogger("visitlog.server.http_server")


def _int_param(request: Request, name: str, default: Optional[int] = None) -> Optional[int]:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidQuery(f"{name} must be an integer, got {raw!r}") from None


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("request body must be JSON") from None
    if not isinstance(body, dict):
        raise ValidationError("request body must be a JSON object")
    return body


def create_http_app(history: HistoryManager, api_key: Optional[str] = None) -> Starlette:
    """Create a Starlette ASGI app over ``history``.

    Args:
        history: The HistoryManager the app serves. The caller owns it.
        api_key: Optional API key for authentication. None disables auth.
    """

    def guarded(endpoint):
        @wraps(endpoint)
        async def wrapper(request: Request):
            if api_key:
                provided = request.headers.get("x-api-key") or request.query_params.get("api_key")
                if provided != api_key:
                    return JSONResponse({"error": "Unauthorized"}, status_code=401)
            return await endpoint(request)

        return wrapper

    async def health(request: Request):
        return JSONResponse({"status": "ok", "server": "visitlog", "version": __version__})

    @guarded
    async def record_visit(request: Request):
        body = await _json_body(request)
        visit_id = await run_in_threadpool(history.record_visit, body)
        return JSONResponse({"id": visit_id}, status_code=201)

    @guarded
    async def visit_detail(request: Request):
        visit_id = request.path_params["visit_id"]
        if request.method == "DELETE":
            await run_in_threadpool(history.delete_visit, visit_id)
            return JSONResponse({"deleted": visit_id})
        visit = await run_in_threadpool(history.get_visit, visit_id)
        if visit is None:
            raise NotFound(visit_id)
        return JSONResponse(visit.to_dict())

    @guarded
    async def visit_duration(request: Request):
        visit_id = request.path_params["visit_id"]
        body = await _json_body(request)
        await run_in_threadpool(history.update_visit_duration, visit_id, body.get("duration"))
        return JSONResponse({"id": visit_id, "duration": body.get("duration")})

    @guarded
    async def search(request: Request):
        query = SearchQuery(
            text=request.query_params.get("q") or None,
            start_time=_int_param(request, "start"),
            end_time=_int_param(request, "end"),
            limit=_int_param(request, "limit", DEFAULT_SEARCH_LIMIT),
        )
        visits = await run_in_threadpool(history.search, query)
        return JSONResponse({"results": [v.to_dict() for v in visits], "count": len(visits)})

    @guarded
    async def titles(request: Request):
        prefix = request.query_params.get("prefix", "")
        limit = _int_param(request, "limit", DEFAULT_SEARCH_LIMIT)
        visits = await run_in_threadpool(history.search_titles, prefix, limit)
        return JSONResponse({"prefix": prefix, "results": [v.to_dict() for v in visits], "count": len(visits)})

    @guarded
    async def recent(request: Request):
        visits = await run_in_threadpool(history.get_recent, _int_param(request, "limit", 20))
        return JSONResponse({"results": [v.to_dict() for v in visits], "count": len(visits)})

    @guarded
    async def url_visits(request: Request):
        url = request.query_params.get("url", "")
        visits = await run_in_threadpool(history.get_visits_for_url, url)
        return JSONResponse({"url": url, "results": [v.to_dict() for v in visits], "count": len(visits)})

    @guarded
    async def most_visited(request: Request):
        pages = await run_in_threadpool(history.get_most_visited, _int_param(request, "limit", 10))
        return JSONResponse({"results": [p.to_dict() for p in pages], "count": len(pages)})

    @guarded
    async def frecent(request: Request):
        pages = await run_in_threadpool(history.get_frecent, _int_param(request, "limit", 10))
        return JSONResponse({"results": [p.to_dict() for p in pages], "count": len(pages)})

    @guarded
    async def stats(request: Request):
        result = await run_in_threadpool(history.stats)
        return JSONResponse(result.to_dict())

    @guarded
    async def clear(request: Request):
        body = await _json_body(request)
        if body.get("all"):
            await run_in_threadpool(history.clear_all)
            return JSONResponse({"cleared": "all"})
        if "older_than" in body:
            deleted = await run_in_threadpool(history.clear_older_than, body["older_than"])
        elif "since" in body:
            deleted = await run_in_threadpool(history.clear_since, body["since"])
        else:
            raise ValidationError("clear needs one of: all, older_than, since")
        return JSONResponse({"deleted": deleted})

    async def validation_error(request: Request, exc: ValidationError):
        return JSONResponse({"error": type(exc).__name__, "detail": str(exc)}, status_code=422)

    async def not_found(request: Request, exc: NotFound):
        return JSONResponse({"error": "NotFound", "detail": str(exc)}, status_code=404)

    async def storage_error(request: Request, exc: StorageError):
        logger.error("Storage failure serving %s: %s", request.url.path, exc)
        return JSONResponse({"error": "StorageError", "detail": str(exc)}, status_code=503)

    app = Starlette(
        routes=[
            Route("/health", endpoint=health),
            Route("/visits", endpoint=record_visit, methods=["POST"]),
            Route("/visits/{visit_id:int}", endpoint=visit_detail, methods=["GET", "DELETE"]),
            Route("/visits/{visit_id:int}/duration", endpoint=visit_duration, methods=["PUT"]),
            Route("/search", endpoint=search),
            Route("/titles", endpoint=titles),
            Route("/recent", endpoint=recent),
            Route("/url-visits", endpoint=url_visits),
            Route("/pages/most-visited", endpoint=most_visited),
            Route("/pages/frecent", endpoint=frecent),
            Route("/stats", endpoint=stats),
            Route("/clear", endpoint=clear, methods=["POST"]),
        ],
        exception_handlers={
            ValidationError: validation_error,
            NotFound: not_found,
            StorageError: storage_error,
        },
    )
    return app


async def run_http(host: str, port: int, api_key: Optional[str], db_path=None) -> None:
    """Open the history, create the HTTP app, run uvicorn until shutdown."""
    import uvicorn

    history = HistoryManager(db_path)
    try:
        app = create_http_app(history, api_key=api_key)
        config = uvicorn.Config(app, host=host, port=port, log_level="info")
        srv = uvicorn.Server(config)
        await srv.serve()
    finally:
        history.close()
