import os
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional, Tuple
from urllib.parse import urlparse

from app.errors import ConfigurationError

DEFAULT_PORT = 3000
DEFAULT_HOST = "0.0.0.0"
DEFAULT_BLOG_URL = "https://vfms-blog-jkxw.onrender.com"
DEFAULT_BLOG_PREFIX = "/blog"
DEFAULT_STATIC_ROOT = "dist"
DEFAULT_SPA_INDEX = "index.html"
DEFAULT_PUBLIC_PROTO = "https"
DEFAULT_ADMIN_PATH_MARKER = "/wp-admin"
# Admin root, login entry point, REST API root, static includes root
DEFAULT_ADMIN_REWRITE_MARKERS = ("/wp-admin", "/wp-login.php", "/wp-json", "/wp-includes")
DEFAULT_AJAX_URL_IDENTIFIER = "ajaxurl"
DEFAULT_PROXY_TIMEOUT = 300.0
DEFAULT_SERVICE_NAME = "spa-blog-gateway"
DEFAULT_METRICS_PATH = "/metrics"


def _split_list(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return ()
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class GatewayConfig:
    """
    Immutable gateway configuration.

    Built once at process start (see ``from_env``) and handed to the proxy,
    the rewrite rules and the fallback router. Use ``with_overrides`` to
    derive a variant instead of mutating it.
    """

    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    upstream_url: str = DEFAULT_BLOG_URL
    mount_prefix: str = DEFAULT_BLOG_PREFIX
    static_root: str = DEFAULT_STATIC_ROOT
    spa_index: str = DEFAULT_SPA_INDEX
    public_host: str = ""
    public_proto: str = DEFAULT_PUBLIC_PROTO
    admin_path_marker: str = DEFAULT_ADMIN_PATH_MARKER
    admin_rewrite_markers: Tuple[str, ...] = DEFAULT_ADMIN_REWRITE_MARKERS
    ajax_url_identifier: str = DEFAULT_AJAX_URL_IDENTIFIER
    blocked_paths: Tuple[str, ...] = ()
    proxy_timeout: float = DEFAULT_PROXY_TIMEOUT
    service_name: str = DEFAULT_SERVICE_NAME
    otlp_endpoint: Optional[str] = None
    otlp_headers: str = ""
    metrics_path: str = DEFAULT_METRICS_PATH
    disconnect_poll_interval: float = field(default=0.1, repr=False)

    def __post_init__(self):
        parsed = urlparse(self.upstream_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(
                f"Upstream URL must be an absolute http(s) URL, got {self.upstream_url!r}"
            )
        if not self.mount_prefix.startswith("/") or self.mount_prefix.rstrip("/") == "":
            raise ConfigurationError(
                f"Mount prefix must be a non-root path starting with '/', got {self.mount_prefix!r}"
            )
        if not self.admin_path_marker:
            raise ConfigurationError("Admin path marker must not be empty")

        # Normalise trailing slashes so the rewrite rules match the bare origin
        object.__setattr__(self, "upstream_url", self.upstream_url.rstrip("/"))
        object.__setattr__(self, "mount_prefix", self.mount_prefix.rstrip("/"))

    @property
    def upstream_host(self) -> str:
        """Host (with port, if any) of the upstream origin."""
        return urlparse(self.upstream_url).netloc

    @property
    def spa_index_path(self) -> str:
        return os.path.join(self.static_root, self.spa_index)

    def with_overrides(self, **changes) -> "GatewayConfig":
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **changes)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "GatewayConfig":
        """Read the configuration from environment variables."""
        env = os.environ if environ is None else environ

        try:
            port = int(env.get("PORT") or DEFAULT_PORT)
            proxy_timeout = float(env.get("PROXY_TIMEOUT") or DEFAULT_PROXY_TIMEOUT)
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e

        markers = _split_list(env.get("ADMIN_REWRITE_MARKERS"))

        return cls(
            port=port,
            host=env.get("HOST") or DEFAULT_HOST,
            upstream_url=env.get("BLOG_URL") or DEFAULT_BLOG_URL,
            mount_prefix=env.get("BLOG_PREFIX") or DEFAULT_BLOG_PREFIX,
            static_root=env.get("STATIC_ROOT") or DEFAULT_STATIC_ROOT,
            spa_index=env.get("SPA_INDEX") or DEFAULT_SPA_INDEX,
            public_host=env.get("PUBLIC_HOST", ""),
            public_proto=env.get("PUBLIC_PROTO") or DEFAULT_PUBLIC_PROTO,
            admin_path_marker=env.get("ADMIN_PATH_MARKER") or DEFAULT_ADMIN_PATH_MARKER,
            admin_rewrite_markers=markers or DEFAULT_ADMIN_REWRITE_MARKERS,
            ajax_url_identifier=env.get("AJAX_URL_IDENTIFIER") or DEFAULT_AJAX_URL_IDENTIFIER,
            blocked_paths=_split_list(env.get("BLOG_BLOCKED_PATHS")),
            proxy_timeout=proxy_timeout,
            service_name=env.get("SERVICE_NAME") or DEFAULT_SERVICE_NAME,
            otlp_endpoint=env.get("OTLP_ENDPOINT") or None,
            otlp_headers=env.get("OTLP_HEADERS", ""),
            metrics_path=env.get("METRICS_PATH", DEFAULT_METRICS_PATH),
        )
