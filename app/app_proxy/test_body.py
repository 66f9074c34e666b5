import gzip

import httpx
import pytest

from app.app_proxy.body import BodyState, BufferedBody, read_upstream_body


class TestBufferedBody:
    def test_starts_receiving(self):
        buffer = BufferedBody()
        assert buffer.state is BodyState.RECEIVING
        assert len(buffer) == 0

    def test_complete_joins_chunks(self):
        buffer = BufferedBody()
        buffer.feed(b"<a href=\"https://exa")
        buffer.feed(b"")
        buffer.feed(b"mple.com/\">")

        assert len(buffer) == len(b"<a href=\"https://example.com/\">")
        assert buffer.complete() == b"<a href=\"https://example.com/\">"
        assert buffer.state is BodyState.COMPLETE
        assert buffer.content == b"<a href=\"https://example.com/\">"

    def test_complete_is_stable(self):
        buffer = BufferedBody()
        buffer.feed(b"abc")
        assert buffer.complete() == buffer.complete() == b"abc"

    def test_feed_after_complete_rejected(self):
        buffer = BufferedBody()
        buffer.complete()
        with pytest.raises(RuntimeError):
            buffer.feed(b"late")

    def test_content_before_complete_rejected(self):
        buffer = BufferedBody()
        buffer.feed(b"abc")
        with pytest.raises(RuntimeError):
            _ = buffer.content


class _ChunkedStream(httpx.AsyncByteStream):
    def __init__(self, chunks):
        self.chunks = chunks

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk


@pytest.mark.asyncio
async def test_read_upstream_body_buffers_all_chunks():
    response = httpx.Response(
        200, stream=_ChunkedStream([b"one ", b"two ", b"three"])
    )

    assert await read_upstream_body(response) == b"one two three"


@pytest.mark.asyncio
async def test_read_upstream_body_decodes_gzip():
    response = httpx.Response(
        200,
        headers={"content-encoding": "gzip"},
        content=gzip.compress(b"<html>compressed</html>"),
    )

    assert await read_upstream_body(response) == b"<html>compressed</html>"
