from dataclasses import dataclass, field
from http import HTTPStatus
from typing import BinaryIO, Iterator, Optional

from .headers import Headers, get_header

MAX_LINE = 65536
MAX_HEADERS = 100


@dataclass
class HTTPRequest:
    """Model representing the head of an incoming HTTP request."""
    method: str
    path: str
    protocol: str
    headers: Headers

    @classmethod
    def from_raw_data(cls, request_data: str) -> Optional['HTTPRequest']:
        """Create HTTPRequest instance from the raw request head."""
        try:
            lines = request_data.split('\n')
            if not lines:
                return None

            # Parse request line
            method, path, protocol = lines[0].strip().split()
            if not protocol.startswith('HTTP/'):
                return None

            # Parse headers
            headers = []
            for line in lines[1:]:
                line = line.strip()
                if not line:
                    break
                key, value = line.split(':', 1)
                if not key or key != key.strip():
                    return None
                headers.append((key, value.strip()))

            return cls(
                method=method.upper(),
                path=path,
                protocol=protocol,
                headers=headers
            )
        except ValueError:
            return None

    @property
    def is_preflight(self) -> bool:
        return self.method == 'OPTIONS'

    @property
    def is_chunked(self) -> bool:
        transfer_encoding = get_header(self.headers, 'Transfer-Encoding') or ''
        return 'chunked' in transfer_encoding.lower()

    @property
    def content_length(self) -> int:
        """Declared body length; raises ValueError if malformed."""
        value = get_header(self.headers, 'Content-Length')
        if value is None:
            return 0
        length = int(value)
        if length < 0:
            raise ValueError(f"Negative Content-Length: {value}")
        return length

    @property
    def expects_continue(self) -> bool:
        expect = get_header(self.headers, 'Expect') or ''
        return expect.lower() == '100-continue' and self.protocol >= 'HTTP/1.1'


class RequestBody:
    """
    Streams a request body off the client connection as it is consumed.

    An instance is handed straight to requests as the upload body. Its
    length is the declared Content-Length so the upstream sees the same
    framing; a chunked body has length 0, which makes requests re-chunk it.
    """

    def __init__(self, rfile: BinaryIO, content_length: int = 0,
                 chunked: bool = False, chunk_size: int = 4096):
        """
        Initialize the body reader.

        Args:
            rfile: Buffered reader over the client socket, positioned after the head
            content_length: Declared body length (ignored when chunked)
            chunked: Whether the body uses chunked transfer coding
            chunk_size: Maximum bytes returned per read
        """
        self._rfile = rfile
        self._chunked = chunked
        self._content_length = 0 if chunked else content_length
        self._remaining = self._content_length
        self._chunk_remaining = 0
        self._chunk_size = chunk_size
        self._done = not chunked and content_length == 0

    @classmethod
    def for_request(cls, rfile: BinaryIO, request: HTTPRequest,
                    chunk_size: int = 4096) -> 'RequestBody':
        """Create the body reader matching a request's framing headers."""
        if request.is_chunked:
            return cls(rfile, chunked=True, chunk_size=chunk_size)
        return cls(rfile, content_length=request.content_length, chunk_size=chunk_size)

    @property
    def is_empty(self) -> bool:
        return not self._chunked and self._content_length == 0

    def __len__(self) -> int:
        return self._content_length

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self.read_chunk()
            if not chunk:
                return
            yield chunk

    def read_chunk(self) -> bytes:
        """Read the next piece of the body; returns b'' once it is exhausted."""
        if self._done:
            return b''
        if self._chunked:
            return self._read_chunked()

        data = self._read(self._remaining)
        self._remaining -= len(data)
        if self._remaining == 0:
            self._done = True
        return data

    def drain(self) -> None:
        """Consume and discard whatever is left of the body."""
        for _ in self:
            pass

    def _read(self, limit: int) -> bytes:
        data = self._rfile.read1(min(limit, self._chunk_size))
        if not data:
            raise ConnectionError("Client closed connection before the body was complete")
        return data

    def _read_line(self) -> bytes:
        line = self._rfile.readline(MAX_LINE + 1)
        if not line:
            raise ConnectionError("Client closed connection before the body was complete")
        if len(line) > MAX_LINE:
            raise ValueError("Chunk line too long")
        return line

    def _read_chunked(self) -> bytes:
        if self._chunk_remaining == 0:
            size_line = self._read_line()
            size = int(size_line.split(b';', 1)[0].strip(), 16)
            if size < 0:
                raise ValueError(f"Invalid chunk size: {size_line!r}")
            if size == 0:
                # Skip trailer section up to the terminating blank line
                while self._read_line() not in (b'\r\n', b'\n'):
                    pass
                self._done = True
                return b''
            self._chunk_remaining = size

        data = self._read(self._chunk_remaining)
        self._chunk_remaining -= len(data)
        if self._chunk_remaining == 0:
            self._read_line()  # CRLF closing the chunk
        return data


@dataclass
class HTTPResponse:
    """Model representing the head (and optional fixed body) of a response."""
    status_code: int
    status_message: str
    headers: Headers = field(default_factory=list)
    body: bytes = b''

    def head_bytes(self) -> bytes:
        """Serialize the status line and headers."""
        lines = [f"HTTP/1.1 {self.status_code} {self.status_message}"]
        lines.extend(f"{k}: {v}" for k, v in self.headers)
        return ('\r\n'.join(lines) + '\r\n\r\n').encode('latin-1')

    def to_bytes(self) -> bytes:
        """Serialize the whole response."""
        return self.head_bytes() + self.body

    @classmethod
    def create_error(cls, status_code: int, message: str) -> 'HTTPResponse':
        """Create a plain-text error response."""
        body = message.encode('utf-8')
        return cls(
            status_code=status_code,
            status_message=HTTPStatus(status_code).phrase,
            headers=[
                ('Content-Type', 'text/plain; charset=utf-8'),
                ('Content-Length', str(len(body))),
                ('Connection', 'close')
            ],
            body=body
        )
