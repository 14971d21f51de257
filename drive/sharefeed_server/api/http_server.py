"""
HTTP server implementation for the ShareFeed server.

This module provides the REST API used by sync clients:
- Shares and share grants
- Files and folders (by ID, "root", or "root:/path/to/file:" reference)
- The per-account delta feed

Invariants:
    - Every endpoint except health and link-share content requires an X-Actor header
    - JSON request/response format, raw bytes for file content
    - Domain errors map to their HTTP classification; not-visible is always 404

How to change safely:
    - Keep response field names stable; sync clients depend on them
    - Version the API if breaking changes are needed
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

from aiohttp import web
from pydantic import BaseModel, Field
from pydantic import ValidationError as RequestValidationError

from .._version import __version__
from ..config import HttpConfig
from ..errors import ShareFeedError, ValidationError
from ..feed.delta import DeltaFeedService
from ..models import ShareType
from ..sharing.resolver import ShareVisibilityResolver

logger = logging.getLogger(__name__)

# An item ID, "root", or a "root:/folder/file.txt:" path reference
ITEM_REF = "{ref:root:/[^:]*:|[^/]+}"


# --- Request models ---


class ShareCreateRequest(BaseModel):
    """Request to share an item."""

    type: ShareType = Field(..., description="1 = link, 2 = app")
    file_id: str = Field(..., min_length=1, description="Item ID or path reference")


class ShareUserCreateRequest(BaseModel):
    """Request to grant a share to an account."""

    user_id: str = Field(..., min_length=1, description="Account receiving the share")


class ShareUserPatchRequest(BaseModel):
    """Request to accept a share grant."""

    is_accepted: bool


class ItemCreateRequest(BaseModel):
    """Request to create a file or folder."""

    name: str = Field(..., min_length=1)
    is_directory: bool = False
    content: str = ""


def create_http_app(
    resolver: ShareVisibilityResolver,
    feed: DeltaFeedService,
    config: HttpConfig | None = None,
) -> web.Application:
    """Create the HTTP application.

    Args:
        resolver: Share visibility resolver
        feed: Delta feed service
        config: HTTP server configuration

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()
    app = web.Application()

    app.router.add_post("/v1/shares", lambda r: handle_create_share(r, resolver))
    app.router.add_get("/v1/shares/{share_id}", lambda r: handle_get_share(r, resolver))
    app.router.add_get(
        "/v1/shares/{share_id}/content", lambda r: handle_link_content(r, resolver)
    )
    app.router.add_post(
        "/v1/shares/{share_id}/users", lambda r: handle_add_share_user(r, resolver)
    )
    app.router.add_get(
        "/v1/shares/{share_id}/users", lambda r: handle_list_share_users(r, resolver)
    )
    app.router.add_get("/v1/share_users", lambda r: handle_list_received(r, resolver))
    app.router.add_patch(
        "/v1/share_users/{share_user_id}", lambda r: handle_patch_share_user(r, resolver)
    )
    app.router.add_delete(
        "/v1/share_users/{share_user_id}", lambda r: handle_delete_share_user(r, resolver)
    )
    app.router.add_get(f"/v1/files/{ITEM_REF}", lambda r: handle_get_item(r, resolver))
    app.router.add_delete(f"/v1/files/{ITEM_REF}", lambda r: handle_delete_item(r, resolver))
    app.router.add_get(
        f"/v1/files/{ITEM_REF}/children", lambda r: handle_list_children(r, resolver)
    )
    app.router.add_post(
        f"/v1/files/{ITEM_REF}/children", lambda r: handle_create_child(r, resolver)
    )
    app.router.add_get(f"/v1/files/{ITEM_REF}/content", lambda r: handle_get_content(r, resolver))
    app.router.add_put(f"/v1/files/{ITEM_REF}/content", lambda r: handle_put_content(r, resolver))
    app.router.add_get(f"/v1/files/{ITEM_REF}/delta", lambda r: handle_delta(r, feed))
    app.router.add_get("/v1/health", handle_health)

    # Add CORS middleware
    def add_cors_headers(request: web.Request, headers) -> None:
        origin = request.headers.get("Origin", "*")
        if "*" in config.cors_origins or origin in config.cors_origins:
            headers["Access-Control-Allow-Origin"] = origin
        headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
        headers["Access-Control-Allow-Headers"] = "Content-Type, X-Actor"

    @web.middleware
    async def cors_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response = web.Response()
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                add_cors_headers(request, e.headers)
                raise

        add_cors_headers(request, response.headers)
        return response

    app.middlewares.append(cors_middleware)

    # Add error handler
    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except ShareFeedError as e:
            if e.http_status >= 500:
                logger.warning(f"Transient failure on {request.path}: {e.message}")
            return web.json_response(e.to_dict(), status=e.http_status)
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(
                {"error": str(e), "error_code": "INTERNAL"},
                status=500,
            )

    app.middlewares.append(error_middleware)

    return app


def bad_request(message: str) -> web.HTTPBadRequest:
    return web.HTTPBadRequest(
        text=json.dumps({"error": message, "error_code": "VALIDATION_ERROR"}),
        content_type="application/json",
    )


def extract_actor(request: web.Request) -> str:
    """Acting account from the X-Actor header.

    Raises:
        web.HTTPBadRequest: If the header is missing
    """
    actor = request.headers.get("X-Actor")
    if not actor:
        raise bad_request("X-Actor header is required")
    return actor


async def parse_body(request: web.Request, model: type[BaseModel]) -> Any:
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise bad_request("Invalid JSON body")
    try:
        return model.model_validate(body)
    except RequestValidationError as e:
        raise bad_request(f"Invalid request body: {e.errors(include_url=False)}")


def parse_limit(request: web.Request) -> int | None:
    raw = request.query.get("limit")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"limit must be an integer: {raw}", field_name="limit")


# --- Shares ---


async def handle_create_share(request: web.Request, resolver: ShareVisibilityResolver) -> web.Response:
    """Handle POST /v1/shares - Share an item."""
    actor = extract_actor(request)
    body = await parse_body(request, ShareCreateRequest)

    share = await resolver.create_share(actor, body.file_id, body.type)
    return web.json_response(share.to_dict())


async def handle_get_share(request: web.Request, resolver: ShareVisibilityResolver) -> web.Response:
    """Handle GET /v1/shares/{share_id} - Get a share."""
    actor = request.headers.get("X-Actor")
    share = await resolver.get_share(actor, request.match_info["share_id"])
    return web.json_response(share.to_dict())


async def handle_link_content(request: web.Request, resolver: ShareVisibilityResolver) -> web.Response:
    """Handle GET /v1/shares/{share_id}/content - Download a link-shared file."""
    content = await resolver.read_link_content(request.match_info["share_id"])
    return web.Response(body=content, content_type="application/octet-stream")


async def handle_add_share_user(request: web.Request, resolver: ShareVisibilityResolver) -> web.Response:
    """Handle POST /v1/shares/{share_id}/users - Grant a share to an account."""
    actor = extract_actor(request)
    body = await parse_body(request, ShareUserCreateRequest)

    share_user = await resolver.grant_share_user(actor, request.match_info["share_id"], body.user_id)
    return web.json_response(share_user.to_dict())


async def handle_list_share_users(request: web.Request, resolver: ShareVisibilityResolver) -> web.Response:
    """Handle GET /v1/shares/{share_id}/users - List grants of a share."""
    actor = extract_actor(request)
    share_users = await resolver.list_share_users(actor, request.match_info["share_id"])
    return web.json_response({"items": [su.to_dict() for su in share_users]})


async def handle_list_received(request: web.Request, resolver: ShareVisibilityResolver) -> web.Response:
    """Handle GET /v1/share_users - List grants received by the actor."""
    actor = extract_actor(request)
    share_users = await resolver.list_received_shares(actor)
    return web.json_response({"items": [su.to_dict() for su in share_users]})


async def handle_patch_share_user(request: web.Request, resolver: ShareVisibilityResolver) -> web.Response:
    """Handle PATCH /v1/share_users/{share_user_id} - Accept a grant."""
    actor = extract_actor(request)
    body = await parse_body(request, ShareUserPatchRequest)
    if not body.is_accepted:
        raise ValidationError(
            "Grants cannot be un-accepted; delete the grant instead", field_name="is_accepted"
        )

    share_user = await resolver.accept_share_user(actor, request.match_info["share_user_id"])
    return web.json_response(share_user.to_dict())


async def handle_delete_share_user(request: web.Request, resolver: ShareVisibilityResolver) -> web.Response:
    """Handle DELETE /v1/share_users/{share_user_id} - Revoke or leave a grant."""
    actor = extract_actor(request)
    await resolver.revoke_share_user(actor, request.match_info["share_user_id"])
    return web.Response(status=204)


# --- Files ---


async def handle_get_item(request: web.Request, resolver: ShareVisibilityResolver) -> web.Response:
    """Handle GET /v1/files/{ref} - Get item metadata."""
    actor = extract_actor(request)
    item = await resolver.resolve_item(actor, request.match_info["ref"])
    return web.json_response(item.to_dict())


async def handle_delete_item(request: web.Request, resolver: ShareVisibilityResolver) -> web.Response:
    """Handle DELETE /v1/files/{ref} - Delete an item."""
    actor = extract_actor(request)
    await resolver.delete_item(actor, request.match_info["ref"])
    return web.Response(status=204)


async def handle_list_children(request: web.Request, resolver: ShareVisibilityResolver) -> web.Response:
    """Handle GET /v1/files/{ref}/children - List a folder."""
    actor = extract_actor(request)
    children = await resolver.list_children(actor, request.match_info["ref"])
    return web.json_response({"items": [child.to_dict() for child in children], "has_more": False})


async def handle_create_child(request: web.Request, resolver: ShareVisibilityResolver) -> web.Response:
    """Handle POST /v1/files/{ref}/children - Create a file or folder."""
    actor = extract_actor(request)
    body = await parse_body(request, ItemCreateRequest)

    item = await resolver.create_item(
        actor,
        request.match_info["ref"],
        body.name,
        content=body.content.encode("utf-8"),
        is_folder=body.is_directory,
    )
    return web.json_response(item.to_dict())


async def handle_get_content(request: web.Request, resolver: ShareVisibilityResolver) -> web.Response:
    """Handle GET /v1/files/{ref}/content - Download file content."""
    actor = extract_actor(request)
    content = await resolver.read_content(actor, request.match_info["ref"])
    return web.Response(body=content, content_type="application/octet-stream")


async def handle_put_content(request: web.Request, resolver: ShareVisibilityResolver) -> web.Response:
    """Handle PUT /v1/files/{ref}/content - Upload file content."""
    actor = extract_actor(request)
    content = await request.read()
    item = await resolver.write_file(actor, request.match_info["ref"], content)
    return web.json_response(item.to_dict())


async def handle_delta(request: web.Request, feed: DeltaFeedService) -> web.Response:
    """Handle GET /v1/files/{ref}/delta - Changes since a cursor."""
    actor = extract_actor(request)
    page = await feed.delta(
        actor,
        request.match_info["ref"],
        cursor=request.query.get("cursor") or None,
        limit=parse_limit(request),
    )
    return web.json_response(page.to_dict())


async def handle_health(request: web.Request) -> web.Response:
    """Handle GET /v1/health - Health check."""
    return web.json_response({"healthy": True, "version": __version__})


async def run_http_server(
    resolver: ShareVisibilityResolver,
    feed: DeltaFeedService,
    config: HttpConfig | None = None,
) -> None:
    """Run the HTTP server until cancelled.

    Args:
        resolver: Share visibility resolver
        feed: Delta feed service
        config: HTTP server configuration
    """
    config = config or HttpConfig()
    app = create_http_app(resolver, feed, config)

    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, config.host, config.port)
    await site.start()

    logger.info(f"HTTP server running on http://{config.host}:{config.port}")

    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        await runner.cleanup()
