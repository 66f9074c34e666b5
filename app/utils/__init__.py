from typing import Optional

from starlette.requests import Request


def client_address(request: Request) -> Optional[str]:
    """Address of the connecting client, if the server reported one."""
    client = getattr(request, "client", None)
    return client.host if client else None


def strip_prefix(path: str, prefix: str) -> str:
    """Remove a mount prefix from a request path, always returning a rooted path."""
    if prefix and (path == prefix or path.startswith(prefix + "/")):
        path = path[len(prefix):]
    if not path.startswith("/"):
        path = "/" + path
    return path
