import logging
import time
from contextlib import contextmanager
from typing import Dict, Optional

from opentelemetry.trace import Tracer

logger = logging.getLogger("uvicorn.error")


@contextmanager
def traced_request(
    tracer: Tracer,
    operation: str,
    method: str,
    path: str,
    start_message: str,
    extra_attrs: Optional[Dict] = None,
):
    """
    Run a block inside a span tagged with the request method and path.

    Logs ``start_message`` when the span opens and records the elapsed time
    on the span when it closes, whether or not the block raised.
    """
    started = time.perf_counter()
    with tracer.start_as_current_span(operation) as span:
        span.set_attributes({"http.request.method": method, "url.path": path, **(extra_attrs or {})})
        logger.info(start_message)
        try:
            yield span
        finally:
            elapsed_ms = round((time.perf_counter() - started) * 1000, 1)
            span.set_attribute("proxy.duration_ms", elapsed_ms)
            logger.debug(f"[Proxy] {method} {path} finished in {elapsed_ms} ms")
