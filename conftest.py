# Ensure tests import modules from the repository root first, so that
# `import app.*` resolves to this checkout even when pytest inserts the
# test module's own directory into sys.path.
import os
import sys

import pytest

SERVICE_ROOT = os.path.dirname(__file__)

if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)

from app.config import GatewayConfig  # noqa: E402

TEST_UPSTREAM_URL = "https://example.com"

SPA_INDEX_HTML = "<!DOCTYPE html><html><body><div id=\"root\"></div></body></html>"
SPA_ASSET_JS = "console.log('spa');"


@pytest.fixture
def static_root(tmp_path):
    """A minimal SPA build: an entry document and one asset."""
    (tmp_path / "index.html").write_text(SPA_INDEX_HTML)
    assets = tmp_path / "assets"
    assets.mkdir()
    (assets / "app.js").write_text(SPA_ASSET_JS)
    return tmp_path


@pytest.fixture
def gateway_config(static_root):
    """Gateway configuration pointed at example.com, with metrics disabled."""
    return GatewayConfig(
        upstream_url=TEST_UPSTREAM_URL,
        static_root=str(static_root),
        public_host="www.example.org",
        metrics_path="",
        disconnect_poll_interval=0.01,
    )
