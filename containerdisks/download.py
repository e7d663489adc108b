"""HTTP access to upstream release sources."""

from __future__ import annotations

import hashlib
from typing import Iterator, Optional

import requests

from containerdisks.constants import CHUNK_SIZE, REQUEST_TIMEOUT, USER_AGENT
from containerdisks.exceptions import PipelineError


class ChecksumReader:
    """File-like reader over a streamed body that hashes every byte handed out.

    ``checksum()`` is only meaningful once the body was read to the end; ``drain()``
    consumes whatever a decompressor left unread.
    """

    def __init__(self, chunks: Iterator[bytes], response: Optional[requests.Response] = None) -> None:
        self._chunks = chunks
        self._response = response
        # Bytes before _offset were already handed out
        self._buffer = bytearray()
        self._offset = 0
        self._hash = hashlib.sha256()
        self.bytes_read = 0
        self._eof = False

    @property
    def buffered(self) -> int:
        return len(self._buffer) - self._offset

    def _fill(self) -> bool:
        if self._eof:
            return False
        for chunk in self._chunks:
            if chunk:
                if self._offset:
                    del self._buffer[: self._offset]
                    self._offset = 0
                self._buffer += chunk
                return True
        self._eof = True
        return False

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            while self._fill():
                pass
            end = len(self._buffer)
        else:
            while self.buffered < size and self._fill():
                pass
            end = min(self._offset + size, len(self._buffer))
        with memoryview(self._buffer) as view:
            data = bytes(view[self._offset : end])
        self._offset = end
        self._hash.update(data)
        self.bytes_read += len(data)
        return data

    def readable(self) -> bool:
        return True

    def drain(self) -> None:
        while self.read(CHUNK_SIZE):
            pass

    def checksum(self) -> str:
        return self._hash.hexdigest()

    def close(self) -> None:
        if self._response is not None:
            self._response.close()
            self._response = None

    def __enter__(self) -> "ChecksumReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class HTTPGetter:
    """Thin requests wrapper shared by the artifact inspectors and the publisher."""

    def __init__(self, session: Optional[requests.Session] = None) -> None:
        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = USER_AGENT

    def get_all(self, url: str) -> bytes:
        try:
            resp = self.session.get(url, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as exc:
            raise PipelineError(f"Failed to download {url}: {exc}") from exc
        if resp.status_code >= 400:
            raise PipelineError(f"HTTP error downloading {url}: {resp.status_code} {resp.reason}")
        return resp.content

    def get_with_checksum(self, url: str) -> ChecksumReader:
        try:
            resp = self.session.get(url, timeout=REQUEST_TIMEOUT, stream=True)
        except requests.RequestException as exc:
            raise PipelineError(f"Failed to download {url}: {exc}") from exc
        if resp.status_code >= 400:
            resp.close()
            raise PipelineError(f"HTTP error downloading {url}: {resp.status_code} {resp.reason}")
        return ChecksumReader(resp.iter_content(chunk_size=CHUNK_SIZE), response=resp)
