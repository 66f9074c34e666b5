"""
Exception logging helpers that never raise.

Used on the proxy error path and by the process supervisor, where a failure
while logging must not mask the original fault. Exception groups (raised by
anyio task groups inside Starlette and httpx) are expanded into their
sub-exceptions.
"""

import logging


def _safe_str(obj) -> str:
    """``str(obj)``, then ``repr(obj)``, then a placeholder naming the type."""
    for convert in (str, repr):
        try:
            return convert(obj)
        except Exception:
            continue
    return f"<{type(obj).__name__} object (string conversion failed)>"


def _sub_exceptions(exception) -> list:
    """Sub-exceptions of an exception group, empty for anything else."""
    if exception is None:
        return []
    try:
        exceptions = getattr(exception, "exceptions", None)
        return list(exceptions) if exceptions is not None else []
    except Exception:
        return []


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception, one line per sub-exception for exception groups.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g. "[Proxy]", "[Gateway]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        safe_prefix = _safe_str(prefix) if prefix is not None else ""
        safe_exception_str = "None" if exception is None else _safe_str(exception)
        sub_exceptions = _sub_exceptions(exception)

        if sub_exceptions:
            try:
                logger.log(
                    level,
                    f"{safe_prefix} Exception with {len(sub_exceptions)} sub-exceptions: {safe_exception_str}",
                )
            except Exception:
                logger.log(level, f"{safe_prefix} Exception group (logging details failed)")

            for i, sub_exc in enumerate(sub_exceptions):
                try:
                    sub_exc_type = type(sub_exc).__name__
                    logger.log(
                        level,
                        f"{safe_prefix} Sub-exception {i+1}: {sub_exc_type}: {_safe_str(sub_exc)}",
                        exc_info=sub_exc if isinstance(sub_exc, BaseException) else False,
                    )
                except Exception:
                    try:
                        logger.log(level, f"{safe_prefix} Sub-exception {i+1}: (logging failed)")
                    except Exception:
                        continue
            return

        try:
            logger.log(
                level,
                f"{safe_prefix} Exception: {safe_exception_str}",
                exc_info=exception if isinstance(exception, BaseException) else False,
            )
        except Exception:
            logger.log(level, f"{safe_prefix} Exception: {safe_exception_str}")

    except Exception:
        # Last resort, never propagate out of the logging helper
        try:
            if logger is not None:
                logger.log(logging.ERROR, "Exception logging failed")
        except Exception:
            pass


def format_exception_message(exception: BaseException) -> str:
    """
    Describe an exception in one line, including the type and message of
    each sub-exception for exception groups.
    """
    try:
        if exception is None:
            return "None"

        sub_exceptions = _sub_exceptions(exception)
        if not sub_exceptions:
            return _safe_str(exception)

        parts = []
        for sub_exc in sub_exceptions:
            try:
                parts.append(f"{type(sub_exc).__name__}: {_safe_str(sub_exc)}")
            except Exception:
                parts.append("(formatting failed)")
        return f"{_safe_str(exception)} (Sub-exceptions: {'; '.join(parts)})"

    except Exception:
        try:
            return f"<{type(exception).__name__} (formatting failed)>"
        except Exception:
            return "<exception (all formatting failed)>"
