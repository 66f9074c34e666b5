import asyncio
import logging
from http.cookies import CookieError, SimpleCookie
from typing import Awaitable, Dict, Optional, Tuple, TypeVar
from urllib.parse import urlparse

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import Response
from opentelemetry import trace

from app.app_proxy.body import read_upstream_body
from app.app_proxy.rewrite import (
    RewriteRules,
    build_rewrite_rules,
    is_admin_path,
    rewrite_content,
)
from app.config import GatewayConfig
from app.errors import ClientDisconnectedError, ProxyUnavailableError
from app.fallback.pages import blog_not_found_response
from app.utils import client_address, strip_prefix
from app.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from app.utils.traced_requests import traced_request

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

T = TypeVar("T")

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Replaced by the proxy on the way to the upstream
OVERRIDDEN_REQUEST_HEADERS = {"host", "content-length", "accept-encoding"}

# Body framing changes after rewriting; date and server are set by uvicorn
STRIPPED_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {
    "content-length",
    "content-encoding",
    "date",
    "server",
}

# Encodings httpx can always decode without optional extras
UPSTREAM_ACCEPT_ENCODING = "gzip, deflate"

# Non-standard status (nginx) for a client that closed the connection early
CLIENT_CLOSED_REQUEST = 499


def upstream_path(request: Request, config: GatewayConfig) -> str:
    """Request path with the mount prefix removed."""
    return strip_prefix(request.url.path, config.mount_prefix)


def get_target_url(request: Request, config: GatewayConfig) -> str:
    """Construct the upstream URL from the request path and query."""
    path = upstream_path(request, config)

    query_string = str(request.url.query)
    if query_string:
        path = f"{path}?{query_string}"

    return f"{config.upstream_url}{path}"


def is_blocked_path(path: str, config: GatewayConfig) -> bool:
    """Whether a prefix-stripped path is on the never-forward list."""
    for blocked in config.blocked_paths:
        blocked = blocked.rstrip("/")
        if not blocked or path == blocked or path.startswith(blocked + "/"):
            return True
    return False


def prepare_headers(request: Request, config: GatewayConfig, path: str) -> Dict[str, str]:
    """
    Prepare headers for forwarding to the upstream.

    Hop-by-hop headers are dropped and ``Host`` is pointed at the upstream.
    Admin requests also carry the public-facing protocol, host and client
    address, which WordPress uses to build its admin URLs and redirects.
    """
    headers = {}

    admin = is_admin_path(path, config)

    for name, value in request.headers.items():
        name_lower = name.lower()
        if name_lower in HOP_BY_HOP_HEADERS or name_lower in OVERRIDDEN_REQUEST_HEADERS:
            continue
        headers[name_lower] = value

    headers["host"] = config.upstream_host
    headers["accept-encoding"] = UPSTREAM_ACCEPT_ENCODING

    if admin:
        headers["x-forwarded-proto"] = config.public_proto
        headers["x-forwarded-host"] = config.public_host or request.headers.get("host", "")
        headers["x-forwarded-for"] = client_address(request) or ""

    return headers


def rewrite_location_header(location: str, config: GatewayConfig) -> str:
    """
    Rewrite a redirect target so it stays under the mount prefix.

    Absolute URLs on the upstream origin and root-relative paths are moved
    under the prefix; external and document-relative URLs are returned as is.
    """
    if not location:
        return location

    prefix = config.mount_prefix
    parsed = urlparse(location)

    if not parsed.scheme and not parsed.netloc:
        if not location.startswith("/"):
            # Relative to the current document, which is already prefixed
            return location
        if location == prefix or location.startswith(prefix + "/"):
            return location
        return f"{prefix}{location}"

    if parsed.netloc == config.upstream_host:
        query = f"?{parsed.query}" if parsed.query else ""
        fragment = f"#{parsed.fragment}" if parsed.fragment else ""
        return f"{prefix}{parsed.path or '/'}{query}{fragment}"

    return location


def rewrite_cookie_path(set_cookie: str, config: GatewayConfig) -> str:
    """
    Scope upstream cookies to the mount prefix.

    The ``Path`` attribute is moved under the prefix and a ``Domain`` naming
    the upstream host is dropped, so the browser stores the cookie for the
    gateway's own host.
    """
    prefix = config.mount_prefix
    cookie = SimpleCookie()
    try:
        cookie.load(set_cookie)
    except CookieError as e:
        logger.warning(f"[Proxy] Failed to parse cookie: {set_cookie}, error: {e}")
        return set_cookie

    if not cookie:
        return set_cookie

    upstream_hostname = urlparse(config.upstream_url).hostname or ""

    for morsel in cookie.values():
        path = morsel.get("path") or "/"
        if path == "/":
            morsel["path"] = prefix
        elif not (path == prefix or path.startswith(prefix + "/")):
            morsel["path"] = f"{prefix}{path}"

        domain = (morsel.get("domain") or "").lstrip(".")
        if domain and domain == upstream_hostname:
            morsel["domain"] = ""

    return "; ".join(morsel.OutputString() for morsel in cookie.values())


async def fetch_upstream(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    headers: Dict[str, str],
    body: bytes,
) -> Tuple[httpx.Response, bytes]:
    """
    Send the request upstream and buffer the complete response body.

    The response is always closed, including when the fetch is cancelled
    halfway through the body.
    """
    upstream_request = client.build_request(method, url, headers=headers, content=body)
    response = await client.send(upstream_request, stream=True)
    try:
        content = await read_upstream_body(response)
    finally:
        await response.aclose()
    return response, content


async def _wait_for_disconnect(request: Request, interval: float) -> None:
    while not await request.is_disconnected():
        await asyncio.sleep(interval)


async def run_unless_disconnected(
    request: Request, work: Awaitable[T], interval: float
) -> T:
    """
    Await ``work`` while watching the client connection.

    If the client disconnects first, ``work`` is cancelled and
    ``ClientDisconnectedError`` is raised. If the connection cannot be
    watched, ``work`` simply runs to completion.
    """
    task = asyncio.ensure_future(work)
    watcher = asyncio.ensure_future(_wait_for_disconnect(request, interval))

    try:
        done, _ = await asyncio.wait(
            {task, watcher}, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        task.cancel()
        watcher.cancel()
        raise

    if task in done:
        watcher.cancel()
        return task.result()

    if watcher.exception() is not None:
        logger.debug(
            f"[Proxy] Disconnect watcher failed: {format_exception_message(watcher.exception())}"
        )
        return await task

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    raise ClientDisconnectedError()


def build_response(
    upstream: httpx.Response,
    content: bytes,
    config: GatewayConfig,
    rules: RewriteRules,
    admin: bool,
) -> Response:
    """Turn the buffered upstream response into the client response."""
    content_type = upstream.headers.get("content-type", "")
    content = rewrite_content(content, content_type, rules, admin)

    response = Response(content=content, status_code=upstream.status_code)
    for name, value in upstream.headers.multi_items():
        name_lower = name.lower()

        # Skip hop-by-hop and body framing headers
        if name_lower in STRIPPED_RESPONSE_HEADERS:
            continue

        # Rewrite Location header for redirects
        if name_lower == "location":
            value = rewrite_location_header(value, config)

        # Rewrite Set-Cookie path
        elif name_lower == "set-cookie":
            value = rewrite_cookie_path(value, config)

        response.headers.append(name_lower, value)

    return response


async def forward_to_target(
    request: Request,
    config: GatewayConfig,
    rules: RewriteRules,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Response:
    """
    Forward a prefixed request to the upstream blog.

    The upstream response is buffered in full, rewritten once and returned
    with the upstream status code. Transport failures raise
    ``ProxyUnavailableError``; a client disconnect aborts the upstream call.
    """
    path = upstream_path(request, config)
    target_url = get_target_url(request, config)
    admin = is_admin_path(path, config)

    with traced_request(
        tracer,
        operation="proxy_request",
        method=request.method,
        path=request.url.path,
        start_message=f"[Proxy] {request.method} {request.url.path} -> {target_url}",
        extra_attrs={"proxy.target_url": target_url, "proxy.admin_path": admin},
    ) as span:
        headers = prepare_headers(request, config, path)
        body = await request.body()

        try:
            async with httpx.AsyncClient(
                transport=transport,
                timeout=httpx.Timeout(config.proxy_timeout),
                follow_redirects=False,  # Redirects are rewritten and passed back
            ) as client:
                upstream, content = await run_unless_disconnected(
                    request,
                    fetch_upstream(client, request.method, target_url, headers, body),
                    config.disconnect_poll_interval,
                )

        except ClientDisconnectedError:
            logger.info(f"[Proxy] Client disconnected, aborted upstream call to {target_url}")
            span.set_attribute("proxy.error", "client_disconnected")
            return Response(status_code=CLIENT_CLOSED_REQUEST)

        except httpx.RequestError as e:
            log_exception_with_details(logger, f"[Proxy] Upstream request to {target_url} failed:", e)
            span.set_attribute("proxy.error", format_exception_message(e))
            raise ProxyUnavailableError(target_url, e) from e

        span.set_attribute("proxy.status_code", upstream.status_code)
        logger.debug(
            f"[Proxy] {request.method} {target_url} -> {upstream.status_code} ({len(content)} bytes)"
        )
        return build_response(upstream, content, config, rules, admin)


def build_proxy_router(
    config: GatewayConfig, transport: Optional[httpx.AsyncBaseTransport] = None
) -> APIRouter:
    """
    Create the router that proxies everything under the mount prefix.

    ``transport`` replaces the network transport of the outbound client.
    """
    router = APIRouter(prefix=config.mount_prefix)
    rules = build_rewrite_rules(config)

    async def proxy_all(request: Request):
        """Catch-all route that proxies all requests to the upstream blog."""
        if is_blocked_path(upstream_path(request, config), config):
            logger.info(f"[Proxy] Refusing blocked path {request.url.path}")
            return blog_not_found_response()
        return await forward_to_target(request, config, rules, transport)

    router.add_api_route("", proxy_all, methods=PROXY_METHODS, include_in_schema=False)
    router.add_api_route(
        "/{path:path}", proxy_all, methods=PROXY_METHODS, include_in_schema=False
    )
    return router
