"""
HTTP API for the pgstate state store.

This module exposes the store over a small JSON REST API so that a host
runtime (or the Python SDK) can reach it out of process.

Endpoints:
    GET    /v1/state/{key}          Read one key (204 if absent)
    POST   /v1/state                Save a list of key/value pairs atomically
    DELETE /v1/state/{key}          Delete one key (If-Match carries the etag)
    POST   /v1/state/bulk           Read several keys
    POST   /v1/state/transaction    Apply upserts and deletes atomically
    GET    /v1/health               Backend health check

Invariants:
    - Store calls block, so they run in worker threads
    - Errors are returned as {"error": ..., "error_code": ...}
    - ETag mismatches map to 409 Conflict

How to change safely:
    - Keep request shapes in sync with sdk/pgstate_sdk
    - Add endpoints, do not change existing status codes
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

from aiohttp import web

from ..config import HttpConfig
from ..errors import (
    BackendError,
    InvalidArgumentError,
    NotFoundOrConflictError,
    StateStoreError,
)
from ..state import (
    DeleteRequest,
    GetRequest,
    OperationType,
    PostgreSQLStore,
    SetRequest,
    TransactionalStateOperation,
    TransactionalStateRequest,
)
from ..state.types import require_key

logger = logging.getLogger(__name__)


def status_for_error(err: StateStoreError) -> int:
    """Map a store error to an HTTP status code."""
    if isinstance(err, InvalidArgumentError):
        return 400
    if isinstance(err, NotFoundOrConflictError):
        return 409
    if isinstance(err, BackendError):
        return 502
    return 500


def create_http_app(store: PostgreSQLStore) -> web.Application:
    """Create an HTTP application for the state store.

    Args:
        store: Initialized PostgreSQLStore

    Returns:
        aiohttp Application instance
    """
    app = web.Application()

    app.router.add_get("/v1/state/{key}", lambda r: handle_get(r, store))
    app.router.add_post("/v1/state", lambda r: handle_save(r, store))
    app.router.add_delete("/v1/state/{key}", lambda r: handle_delete(r, store))
    app.router.add_post("/v1/state/bulk", lambda r: handle_bulk_get(r, store))
    app.router.add_post("/v1/state/transaction", lambda r: handle_transaction(r, store))
    app.router.add_get("/v1/health", lambda r: handle_health(r, store))

    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except StateStoreError as e:
            status = status_for_error(e)
            if status >= 500:
                logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response({"error": e.message, "error_code": e.code}, status=status)
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response({"error": str(e), "error_code": "INTERNAL"}, status=500)

    app.middlewares.append(error_middleware)

    return app


async def read_json(request: web.Request) -> Any:
    """Decode the request body.

    Raises:
        InvalidArgumentError: If the body is not valid JSON
    """
    try:
        return await request.json()
    except json.JSONDecodeError as e:
        raise InvalidArgumentError(f"invalid JSON body: {e}") from e


def unquote_etag(value: str | None) -> str | None:
    """Strip the entity-tag quotes from an If-Match value, if present."""
    if value is None:
        return None
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value


def parse_get_keys(body: Any) -> list[GetRequest]:
    """Build GetRequests from a {"keys": [...]} body."""
    keys = body.get("keys") if isinstance(body, dict) else None
    if not isinstance(keys, list):
        raise InvalidArgumentError("keys list is required")
    for key in keys:
        if not isinstance(key, str):
            raise InvalidArgumentError("key must be a string")
    return [GetRequest(key=key) for key in keys]


def parse_set_request(item: Any) -> SetRequest:
    """Build a SetRequest from a {"key", "value", "etag"?} object."""
    if not isinstance(item, dict):
        raise InvalidArgumentError("state item must be an object")
    key = item.get("key") or ""
    if not isinstance(key, str):
        raise InvalidArgumentError("key must be a string")
    require_key(key, "set")
    if "value" not in item:
        raise InvalidArgumentError(f"missing value for key {key!r}", key=key)
    return SetRequest(
        key=key,
        value=item["value"],
        etag=item.get("etag"),
        metadata=item.get("metadata") or {},
    )


def parse_delete_request(item: Any) -> DeleteRequest:
    """Build a DeleteRequest from a {"key", "etag"?} object."""
    if not isinstance(item, dict):
        raise InvalidArgumentError("state item must be an object")
    key = item.get("key") or ""
    if not isinstance(key, str):
        raise InvalidArgumentError("key must be a string")
    require_key(key, "delete")
    return DeleteRequest(key=key, etag=item.get("etag"), metadata=item.get("metadata") or {})


def parse_transaction(body: Any) -> TransactionalStateRequest:
    """Build a TransactionalStateRequest from the request body."""
    if not isinstance(body, dict) or not isinstance(body.get("operations"), list):
        raise InvalidArgumentError("operations list is required")

    operations = []
    for raw in body["operations"]:
        if not isinstance(raw, dict):
            raise InvalidArgumentError("operation must be an object")
        try:
            op_type = OperationType(raw.get("operation"))
        except ValueError:
            raise InvalidArgumentError(f"unsupported operation: {raw.get('operation')!r}") from None
        if op_type == OperationType.UPSERT:
            req: SetRequest | DeleteRequest = parse_set_request(raw.get("request"))
        else:
            req = parse_delete_request(raw.get("request"))
        operations.append(TransactionalStateOperation(operation=op_type, request=req))

    return TransactionalStateRequest(operations=operations, metadata=body.get("metadata") or {})


async def handle_get(request: web.Request, store: PostgreSQLStore) -> web.StreamResponse:
    """Handle GET /v1/state/{key} - Read one key."""
    key = request.match_info["key"]
    resp = await asyncio.to_thread(store.get, GetRequest(key=key))

    if not resp.found:
        return web.Response(status=204)
    return web.json_response(
        {"key": key, "value": resp.json(), "etag": resp.etag},
        headers={"ETag": f'"{resp.etag}"'},
    )


async def handle_save(request: web.Request, store: PostgreSQLStore) -> web.StreamResponse:
    """Handle POST /v1/state - Save key/value pairs atomically."""
    body = await read_json(request)
    if not isinstance(body, list):
        raise InvalidArgumentError("request body must be a list of state items")

    requests = [parse_set_request(item) for item in body]
    await asyncio.to_thread(store.bulk_set, requests)
    return web.Response(status=204)


async def handle_delete(request: web.Request, store: PostgreSQLStore) -> web.StreamResponse:
    """Handle DELETE /v1/state/{key} - Delete one key."""
    key = request.match_info["key"]
    etag = unquote_etag(request.headers.get("If-Match"))
    await asyncio.to_thread(store.delete, DeleteRequest(key=key, etag=etag))
    return web.Response(status=204)


async def handle_bulk_get(request: web.Request, store: PostgreSQLStore) -> web.StreamResponse:
    """Handle POST /v1/state/bulk - Read several keys."""
    requests = parse_get_keys(await read_json(request))
    results = await asyncio.to_thread(store.bulk_get, requests)
    return web.json_response(
        [
            {
                "key": r.key,
                "value": json.loads(r.data) if r.data is not None else None,
                "etag": r.etag,
                "error": r.error,
            }
            for r in results
        ]
    )


async def handle_transaction(request: web.Request, store: PostgreSQLStore) -> web.StreamResponse:
    """Handle POST /v1/state/transaction - Apply operations atomically."""
    txn = parse_transaction(await read_json(request))
    await asyncio.to_thread(store.multi, txn)
    return web.Response(status=204)


async def handle_health(request: web.Request, store: PostgreSQLStore) -> web.StreamResponse:
    """Handle GET /v1/health - Health check."""
    try:
        await asyncio.to_thread(store.ping)
    except BackendError as e:
        return web.json_response({"healthy": False, "error": e.message}, status=503)
    return web.json_response({"healthy": True})


async def start_http_server(store: PostgreSQLStore, config: HttpConfig | None = None) -> web.AppRunner:
    """Start serving the HTTP API.

    Args:
        store: Initialized PostgreSQLStore
        config: HTTP server configuration

    Returns:
        The running AppRunner; call ``cleanup()`` on it to stop
    """
    config = config or HttpConfig()
    runner = web.AppRunner(create_http_app(store))
    await runner.setup()

    site = web.TCPSite(runner, config.host, config.port)
    await site.start()

    logger.info(f"HTTP server running on http://{config.host}:{config.port}")
    return runner
