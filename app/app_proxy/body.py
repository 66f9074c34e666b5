from enum import Enum
from typing import List

import httpx


class BodyState(str, Enum):
    RECEIVING = "receiving"
    COMPLETE = "complete"


class BufferedBody:
    """
    Accumulates an upstream body chunk by chunk.

    Rewrite rules can match across chunk boundaries, so nothing is handed
    on until ``complete()`` has joined every chunk into one buffer.
    """

    def __init__(self):
        self._chunks: List[bytes] = []
        self._content = b""
        self.state = BodyState.RECEIVING

    def feed(self, chunk: bytes) -> None:
        if self.state is BodyState.COMPLETE:
            raise RuntimeError("Cannot feed a body that is already complete")
        if chunk:
            self._chunks.append(chunk)

    def complete(self) -> bytes:
        if self.state is BodyState.RECEIVING:
            self._content = b"".join(self._chunks)
            self._chunks = []
            self.state = BodyState.COMPLETE
        return self._content

    @property
    def content(self) -> bytes:
        if self.state is not BodyState.COMPLETE:
            raise RuntimeError("Body is still being received")
        return self._content

    def __len__(self) -> int:
        if self.state is BodyState.COMPLETE:
            return len(self._content)
        return sum(len(chunk) for chunk in self._chunks)


async def read_upstream_body(response: httpx.Response) -> bytes:
    """Drain a streamed httpx response into a single decoded byte string."""
    buffer = BufferedBody()
    async for chunk in response.aiter_bytes():
        buffer.feed(chunk)
    return buffer.complete()
