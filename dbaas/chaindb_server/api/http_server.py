"""
HTTP server implementation for ChainDB.

This module exposes the tables of a Database as REST resources and mounts
the WebSocket push channel. Routes are resolved against the database's
table registry at request time, so tables created after the app is built
are served as well.

Resources (collection path is the table name plus "s"):
    GET    /Persons/                list all objects
    POST   /Persons/                create an object (201 + Location)
    GET    /Persons/{id}            one object (404 if absent)
    PUT    /Persons/{id}            update an object; create one if absent (201)
    DELETE /Persons/{id}            remove an object (204, also if absent)
    GET    /Persons/{id}/{column}   one field as text/plain
    PUT    /Persons/{id}/{column}   set one field, body {"value": ...}
    GET    /health                  health check
    GET    /ws                      WebSocket push channel

Invariants:
    - Responses are sent after the storage side effect has settled
    - Misuse maps to 400, storage failure to 500, closed database to 503
    - Trailing slashes are optional on every resource

How to change safely:
    - Keep resource semantics in sync with the mirror SDK
    - Add new error types to the error middleware mapping
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any

from aiohttp import web

from ..config import HttpConfig
from ..db.database import Database
from ..db.schema import ID_COLUMN
from ..errors import ChainDbError, DatabaseClosedError, OperationTimeoutError, StorageError
from ..notify.hub import BroadcastHub
from .facade import ServerObject, ServerTable

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _error_response(status: int, message: str, code: str) -> web.Response:
    return web.json_response({"error": message, "error_code": code}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Map engine errors onto HTTP statuses."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except DatabaseClosedError as e:
        return _error_response(503, e.message, e.code)
    except (StorageError, OperationTimeoutError) as e:
        logger.error(f"Storage failure on {request.method} {request.path}: {e}")
        return _error_response(500, e.message, e.code)
    except ChainDbError as e:
        return _error_response(400, e.message, e.code)
    except Exception as e:
        logger.error(f"HTTP handler error: {e}", exc_info=True)
        return _error_response(500, str(e), "INTERNAL")


def create_http_app(
    database: Database,
    hub: BroadcastHub | None = None,
    config: HttpConfig | None = None,
) -> web.Application:
    """Create the HTTP application for a database.

    Args:
        database: Database whose tables are served
        hub: Broadcast hub serving the push channel (no channel if None)
        config: HTTP server configuration

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()
    app = web.Application(middlewares=[error_middleware])

    app.router.add_get("/health", partial(handle_health, database=database, hub=hub))
    if hub is not None:
        app.router.add_get(config.ws_path, hub.handle_websocket)

    for slash in ("", "/"):
        collection = "/{collection}" + slash
        item = "/{collection}/{row_id:\\d+}" + slash
        column = "/{collection}/{row_id:\\d+}/{column}" + slash
        app.router.add_get(collection, partial(handle_list, database=database))
        app.router.add_post(collection, partial(handle_create, database=database))
        app.router.add_get(item, partial(handle_get, database=database))
        app.router.add_put(item, partial(handle_replace, database=database))
        app.router.add_delete(item, partial(handle_delete, database=database))
        app.router.add_get(column, partial(handle_get_field, database=database))
        app.router.add_put(column, partial(handle_set_field, database=database))

    return app


def resolve_table(request: web.Request, database: Database) -> ServerTable:
    """Find the table addressed by the request path.

    Raises:
        web.HTTPNotFound: If no table has this collection name
    """
    collection = request.match_info["collection"]
    table = database.tables.by_collection(collection)
    if table is None:
        raise web.HTTPNotFound(
            text=json.dumps({"error": f"No such collection: {collection}"}),
            content_type="application/json",
        )
    return ServerTable(table)


async def read_json(request: web.Request) -> Any:
    """Parse the request body as JSON.

    Raises:
        web.HTTPBadRequest: If the body is not valid JSON
    """
    try:
        return await request.json(loads=json.loads)
    except json.JSONDecodeError:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Invalid JSON body"}),
            content_type="application/json",
        )


async def read_json_object(request: web.Request) -> dict[str, Any]:
    body = await read_json(request)
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "JSON object expected"}),
            content_type="application/json",
        )
    return body


def _not_found() -> web.Response:
    return web.json_response({"error": "Not found"}, status=404)


def _location(table: ServerTable, obj: ServerObject) -> str:
    return f"/{table.collection}/{obj.id}"


async def handle_health(
    request: web.Request, database: Database, hub: BroadcastHub | None
) -> web.Response:
    """Handle GET /health - Health check."""
    healthy = database.is_open
    result = {
        "healthy": healthy,
        "tables": list(database.tables) if healthy else [],
        "pending_operations": database.queue.pending,
        "subscribers": hub.subscriber_count if hub is not None else 0,
    }
    return web.json_response(result, status=200 if healthy else 503)


async def handle_list(request: web.Request, database: Database) -> web.Response:
    """Handle GET /{collection}/ - All objects of a table."""
    table = resolve_table(request, database)
    objects = await table.all()
    return web.json_response([obj.all_fields() for obj in objects])


async def handle_create(request: web.Request, database: Database) -> web.Response:
    """Handle POST /{collection}/ - Create an object."""
    table = resolve_table(request, database)
    fields = await read_json_object(request)
    obj = await table.insert(fields)
    return web.json_response(
        obj.all_fields(),
        status=201,
        headers={"Location": _location(table, obj)},
    )


async def handle_get(request: web.Request, database: Database) -> web.Response:
    """Handle GET /{collection}/{id} - One object."""
    table = resolve_table(request, database)
    obj = await table.get(int(request.match_info["row_id"]))
    if obj is None:
        return _not_found()
    return web.json_response(obj.all_fields())


async def handle_replace(request: web.Request, database: Database) -> web.Response:
    """Handle PUT /{collection}/{id} - Update an object, or create one."""
    table = resolve_table(request, database)
    fields = await read_json_object(request)
    fields.pop(ID_COLUMN, None)
    obj = await table.get(int(request.match_info["row_id"]))
    if obj is not None:
        return web.json_response(await obj.update(fields))

    # Ids are engine-assigned: the new object gets a fresh id
    created = await table.insert(fields)
    return web.json_response(
        created.all_fields(),
        status=201,
        headers={"Location": _location(table, created)},
    )


async def handle_delete(request: web.Request, database: Database) -> web.Response:
    """Handle DELETE /{collection}/{id} - Remove an object."""
    table = resolve_table(request, database)
    obj = await table.get(int(request.match_info["row_id"]))
    if obj is not None:
        await obj.remove()
    return web.Response(status=204)


def _check_column(table: ServerTable, column: str) -> None:
    if column != ID_COLUMN and column not in table.columns:
        raise web.HTTPNotFound(
            text=json.dumps({"error": f"No such column: {column}"}),
            content_type="application/json",
        )


async def handle_get_field(request: web.Request, database: Database) -> web.Response:
    """Handle GET /{collection}/{id}/{column} - One field as text."""
    table = resolve_table(request, database)
    column = request.match_info["column"]
    _check_column(table, column)
    obj = await table.get(int(request.match_info["row_id"]))
    if obj is None:
        return _not_found()
    value = obj.get_field(column)
    return web.Response(text="" if value is None else str(value), content_type="text/plain")


async def handle_set_field(request: web.Request, database: Database) -> web.Response:
    """Handle PUT /{collection}/{id}/{column} - Set one field."""
    table = resolve_table(request, database)
    column = request.match_info["column"]
    _check_column(table, column)
    body = await read_json_object(request)
    if "value" not in body:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Body must be {\"value\": ...}"}),
            content_type="application/json",
        )
    obj = await table.get(int(request.match_info["row_id"]))
    if obj is None:
        return _not_found()
    return web.json_response(await obj.set_field(column, body["value"]))
