"""
MCP server and HTTP routes for cached Notion database reads.
"""

from __future__ import annotations

import atexit
import logging
import sys
import time
from typing import Any

import uvicorn
from mcp.server.fastmcp import FastMCP
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, Response

from .config import Settings, load_settings
from .notion_api import NotionClient
from .service import DatabaseIgnoredError, DatabaseQueryError, DataService

logger = logging.getLogger(__name__)

MIN_DATABASE_ID_LENGTH = 10

INDEX_HTML = """<!doctype html>
<head>
<title>Notion Data Service</title>
</head>
<body>
<h1>Notion Data Service</h1>
<ul>
<li><a href="/status">Status</a></li>
<li><a href="/list">List data</a></li>
<li><a href="/query?id=">Query data</a></li>
</ul>
</body>
</html>"""

mcp = FastMCP(
    "Notion Data Service",
    instructions=(
        "Cached read access to Notion databases. "
        "Databases are served from an in-memory cache refreshed on a schedule; "
        "a database not yet cached is fetched from Notion on first use. "
        "Databases whose fetch recently failed are ignored for a few minutes."
    ),
)

_settings: Settings | None = None
_client: NotionClient | None = None
_service: DataService | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def get_service() -> DataService:
    global _client, _service
    if _service is None:
        settings = get_settings()
        _client = NotionClient(
            settings.notion_access_token,
            timeout_seconds=settings.request_timeout_seconds,
        )
        _service = DataService(
            _client,
            poll_interval_seconds=settings.poll_interval_seconds,
            known_databases=settings.known_databases,
        )
    return _service


def _shutdown() -> None:
    if _service is not None:
        _service.stop()
    if _client is not None:
        _client.close()


atexit.register(_shutdown)


def _cached_items(database_id: str) -> list[dict[str, Any]] | None:
    records = get_service().cache.get(database_id)
    if records is None:
        return None
    logger.info("The database %s fetched from cache", database_id)
    return [record.to_dict() for record in records]


def _fetch(database_id: str, nocache: bool) -> list[dict[str, Any]]:
    service = get_service()
    if nocache:
        records = service.query_database(database_id, True)
    else:
        records = service.query_cached(database_id)
    return [record.to_dict() for record in records]


async def _query(database_id: str, nocache: bool) -> list[dict[str, Any]]:
    # Hits are answered on the event loop; only fetches wait on a worker thread.
    if not nocache:
        items = _cached_items(database_id)
        if items is not None:
            return items
    return await run_in_threadpool(_fetch, database_id, nocache)


@mcp.tool()
async def query_database(id: str, nocache: bool = False) -> dict[str, Any]:
    """Return the normalized records of a Notion database.

    Args:
        id: Notion database ID, with or without hyphens.
        nocache: Skip the cache and fetch from Notion; the result is cached afterwards.

    Returns:
        dict with "last_updated" (unix seconds) and "notion_data" (list of
        {id, properties: [{name, values}], last_updated}).
    """
    items = await _query(id, nocache)
    return {"last_updated": int(time.time()), "notion_data": items}


@mcp.tool()
def list_databases() -> dict[str, Any]:
    """List database IDs currently held in the cache."""
    return {
        "last_updated": int(time.time()),
        "notion_databases": get_service().list_known_databases(),
    }


@mcp.tool()
def get_cache_health() -> dict[str, Any]:
    """Return cache size, ignored databases and last refresh state."""
    return get_service().get_health()


async def root_route(request: Request) -> Response:
    return HTMLResponse(INDEX_HTML)


async def status_route(request: Request) -> Response:
    return JSONResponse({"success": True})


async def list_route(request: Request) -> Response:
    databases = get_service().list_known_databases()
    return JSONResponse({"last_updated": int(time.time()), "notion_databases": databases})


async def query_route(request: Request) -> Response:
    database_id = request.query_params.get("id", "")
    nocache = bool(request.query_params.get("nocache"))

    if len(database_id) < MIN_DATABASE_ID_LENGTH:
        logger.error("Invalid ID passed to query data handler: %s", database_id)
        return JSONResponse(
            {"code": "invalid_database_id", "message": f"invalid database id {database_id!r}"},
            status_code=400,
        )

    try:
        items = await _query(database_id, nocache)
    except DatabaseIgnoredError as exc:
        return JSONResponse({"code": exc.code, "message": exc.message}, status_code=503)
    except DatabaseQueryError as exc:
        return JSONResponse({"code": exc.code, "message": exc.message}, status_code=502)
    except Exception as exc:
        logger.error("Failed to query notion database %s: %s", database_id, exc)
        return JSONResponse(
            {"code": getattr(exc, "code", "database_query_failed"), "message": str(exc)},
            status_code=502,
        )

    return JSONResponse({"last_updated": int(time.time()), "notion_data": items})


HTTP_ROUTES = [
    ("/", root_route),
    ("/status", status_route),
    ("/list", list_route),
    ("/query", query_route),
]

for _path, _handler in HTTP_ROUTES:
    mcp.custom_route(_path, methods=["GET"])(_handler)


def create_app(transport: str = "streamable-http") -> Starlette:
    """ASGI app serving the MCP endpoint and the HTTP routes, open to any origin."""
    app = mcp.sse_app() if transport == "sse" else mcp.streamable_http_app()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Mcp-Session-Id"],
    )
    return app


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    settings = get_settings()
    logging.getLogger().setLevel(getattr(logging, settings.log_level, logging.INFO))

    logger.info("Starting up Notion.so data API service")
    logger.info("Polling Notion.so every %s seconds", settings.poll_interval_seconds)

    get_service().start()
    try:
        if settings.transport == "stdio":
            mcp.run(transport="stdio")
        else:
            logger.info("API binding to %s:%s", settings.host, settings.port)
            uvicorn.run(
                create_app(settings.transport),
                host=settings.host,
                port=settings.port,
                log_level=settings.log_level.lower(),
            )
    finally:
        _shutdown()
        logger.info("Shutting down Notion.so data API service")
