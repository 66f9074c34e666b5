"""
Response body rewriting for the blog proxy.

The upstream blog renders absolute links to its own origin and, on admin
pages, root-relative links to its admin, login, REST and includes paths.
Those are rewritten so they resolve under the gateway's mount prefix.

This module is pure: no I/O, no state. Rules are compiled once from the
gateway configuration and applied exactly once per response (the admin
rules are not safe to apply twice).
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Pattern, Tuple, Union

from app.config import GatewayConfig

logger = logging.getLogger("uvicorn.error")

Replacement = Union[str, Callable[["re.Match[str]"], str]]

TEXTUAL_CONTENT_MARKERS = ("javascript", "json", "xml", "ecmascript")


@dataclass(frozen=True)
class RewriteRule:
    """A compiled pattern and what every match is replaced with."""

    name: str
    pattern: Pattern[str]
    replacement: Replacement

    def apply(self, text: str) -> str:
        return self.pattern.sub(self.replacement, text)


@dataclass(frozen=True)
class RewriteRules:
    """
    Ordered rule set.

    ``base`` rules run on every proxied body; ``admin`` rules run after them,
    only for admin sub-paths.
    """

    base: Tuple[RewriteRule, ...]
    admin: Tuple[RewriteRule, ...]


def _literal(text: str) -> Callable[["re.Match[str]"], str]:
    # Callable replacements are inserted verbatim, no backslash processing
    return lambda _match: text


def _marker_pattern(marker: str, prefix: str) -> Pattern[str]:
    # Skip markers already sitting under the prefix, e.g. produced by the
    # origin URL rule, so they are not prefixed twice
    return re.compile(f"(?<!{re.escape(prefix)}){re.escape(marker)}")


def build_rewrite_rules(config: GatewayConfig) -> RewriteRules:
    """Compile the rewrite rules for the configured upstream and prefix."""
    prefix = config.mount_prefix
    admin_root = config.admin_path_marker

    base = (
        RewriteRule(
            name="upstream-origin",
            pattern=re.compile(re.escape(config.upstream_url)),
            replacement=_literal(prefix),
        ),
    )

    admin = [
        RewriteRule(
            name=f"admin-marker:{marker}",
            pattern=_marker_pattern(marker, prefix),
            replacement=_literal(f"{prefix}{marker}"),
        )
        for marker in config.admin_rewrite_markers
    ]

    ajax_identifier = config.ajax_url_identifier
    admin.append(
        RewriteRule(
            name="ajax-url",
            pattern=re.compile(
                f"{re.escape(ajax_identifier)}\\s*:\\s*['\"][^'\"]*['\"]"
            ),
            replacement=_literal(
                f'{ajax_identifier}: "{prefix}{admin_root}/admin-ajax.php"'
            ),
        )
    )

    admin_root_pattern = _marker_pattern(admin_root, prefix)

    def _rewrite_form_action(match: "re.Match[str]") -> str:
        # Only the admin root inside the attribute value is touched
        return admin_root_pattern.sub(_literal(f"{prefix}{admin_root}"), match.group(0))

    admin.append(
        RewriteRule(
            name="form-action",
            pattern=re.compile(
                f"action=['\"][^'\"]*{re.escape(admin_root)}[^'\"]*['\"]"
            ),
            replacement=_rewrite_form_action,
        )
    )

    return RewriteRules(base=base, admin=tuple(admin))


def is_admin_path(path: str, config: GatewayConfig) -> bool:
    """Whether a prefix-stripped upstream path belongs to the admin interface."""
    return config.admin_path_marker in (path or "")


def rewrite(body: str, rules: RewriteRules, is_admin_path: bool) -> str:
    """Apply the rule set to a complete response body."""
    for rule in rules.base:
        body = rule.apply(body)

    if is_admin_path:
        for rule in rules.admin:
            body = rule.apply(body)

    return body


def is_textual_content(content_type: str) -> bool:
    """Whether a response with this content type should be rewritten."""
    if not content_type:
        return True
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type.startswith("text/"):
        return True
    return any(marker in media_type for marker in TEXTUAL_CONTENT_MARKERS)


def rewrite_content(
    content: bytes, content_type: str, rules: RewriteRules, admin: bool
) -> bytes:
    """
    Rewrite a buffered upstream body.

    Binary bodies, and bodies that are not valid UTF-8, are returned as is.
    """
    if not content or not is_textual_content(content_type):
        return content

    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError:
        logger.debug(f"[Proxy] Skipping rewrite of non UTF-8 body ({content_type})")
        return content

    return rewrite(text, rules, admin).encode("utf-8")
