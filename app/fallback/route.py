import logging
import os

from fastapi import FastAPI, Request
from fastapi.responses import FileResponse, PlainTextResponse, Response
from starlette.exceptions import HTTPException
from starlette.staticfiles import StaticFiles
from starlette.types import Scope

from app.config import GatewayConfig
from app.errors import ProxyUnavailableError
from app.fallback.pages import blog_not_found_response, service_unavailable_response

logger = logging.getLogger("uvicorn.error")


def is_prefix_scoped(path: str, config: GatewayConfig) -> bool:
    """Whether a path starts with the mount prefix string (``/blogroll`` included)."""
    return path.startswith(config.mount_prefix)


def spa_entry_response(config: GatewayConfig) -> Response:
    """The SPA entry document, whatever route the client asked for."""
    index_path = config.spa_index_path
    if not os.path.isfile(index_path):
        logger.warning(f"[SPA] Entry document {index_path} is missing")
        return PlainTextResponse("Not Found", status_code=404)
    return FileResponse(index_path, media_type="text/html")


class SPAStaticFiles(StaticFiles):
    """
    Static files from the SPA build, falling back to the entry document.

    Existing files are served as they are. Unknown paths get ``index.html``
    so the client-side router can handle them, except paths under the blog
    prefix, which answer 404 instead of rendering the SPA.
    """

    def __init__(self, config: GatewayConfig):
        super().__init__(directory=config.static_root, check_dir=False)
        self.config = config

    async def check_config(self) -> None:
        if not os.path.isdir(self.config.static_root):
            logger.warning(
                f"[SPA] Static root {self.config.static_root} does not exist, serving fallback only"
            )
            return
        await super().check_config()

    async def get_response(self, path: str, scope: Scope) -> Response:
        if is_prefix_scoped(scope.get("path", ""), self.config):
            return blog_not_found_response()

        try:
            response = await super().get_response(path, scope)
        except HTTPException as exc:
            if exc.status_code != 404:
                raise
            return spa_entry_response(self.config)

        if response.status_code == 404:
            return spa_entry_response(self.config)
        return response


async def proxy_unavailable_handler(request: Request, exc: ProxyUnavailableError) -> Response:
    logger.error(f"[Gateway] Blog unavailable for {request.url.path}: {exc}")
    return service_unavailable_response()


def register_fallback(app: FastAPI, config: GatewayConfig) -> None:
    """
    Install the 503 handler and the catch-all static mount.

    Must run after every other route is registered, the mount at ``/``
    matches everything.
    """
    app.add_exception_handler(ProxyUnavailableError, proxy_unavailable_handler)
    app.mount("/", SPAStaticFiles(config), name="spa")
