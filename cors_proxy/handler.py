import socket
import logging
from typing import BinaryIO, Optional, Tuple

import requests

from .config import ProxyConfig
from .cors import apply_cors_headers
from .headers import Headers, copy_headers, fold_headers, set_header
from .models import MAX_HEADERS, MAX_LINE, HTTPRequest, HTTPResponse, RequestBody
from .uri import build_target_uri

logger = logging.getLogger(__name__)

# Never forwarded upstream. The outbound client sets its own Host and body
# framing (from RequestBody), and the proxy answers Expect itself.
EXCLUDED_REQUEST_HEADERS = ('Host', 'Expect', 'Content-Length', 'Transfer-Encoding')

# Hop-by-hop; the response is re-framed by this proxy.
EXCLUDED_RESPONSE_HEADERS = ('Transfer-Encoding',)


class RequestHandler:
    """Handles processing of individual proxied exchanges."""

    def __init__(self, config: ProxyConfig, session: requests.Session):
        """
        Initialize the request handler.

        Args:
            config: Proxy configuration
            session: Outbound HTTP session shared by all exchanges
        """
        self._config = config
        self._session = session

    def handle_client(self, client_socket: socket.socket,
                      client_address: Tuple[str, int]) -> None:
        """
        Handle an individual client connection.

        Preflight requests are answered directly; everything else is
        forwarded to the upstream target. Nothing raised here escapes the
        connection's thread.

        Args:
            client_socket: Socket object for client connection
            client_address: Tuple of client's IP and port
        """
        client_socket.settimeout(self._config.client_timeout)
        rfile = client_socket.makefile('rb')
        request = None

        try:
            try:
                request = self._read_request(rfile)
                if request is None:
                    return
                body = RequestBody.for_request(rfile, request, self._config.buffer_size)
            except ValueError as e:
                logger.debug(f"Bad request from {client_address}: {e}")
                headers = request.headers if request else []
                self._send_error(client_socket, headers, 400, f"Bad request: {e}")
                return

            if request.is_preflight:
                self._handle_preflight(client_socket, request, body)
            else:
                self._forward_request(client_socket, request, body)

        except socket.timeout:
            logger.debug(f"Client {client_address} timed out")
        except Exception as e:
            logger.error(f"Error handling client {client_address}: {e}")
        finally:
            rfile.close()
            client_socket.close()

    def _read_request(self, rfile: BinaryIO) -> Optional[HTTPRequest]:
        """Read and parse the request head; None if the client sent nothing."""
        lines = []
        while True:
            line = rfile.readline(MAX_LINE + 1)
            if len(line) > MAX_LINE:
                raise ValueError("Header line too long")
            if not line:
                if not lines:
                    return None
                raise ValueError("Connection closed inside the request head")
            if line in (b'\r\n', b'\n'):
                if not lines:
                    continue  # stray CRLF before the request line
                break
            lines.append(line)
            if len(lines) > MAX_HEADERS + 1:
                raise ValueError("Too many headers")

        request = HTTPRequest.from_raw_data(b''.join(lines).decode('latin-1'))
        if request is None:
            raise ValueError("Malformed request head")
        return request

    def _handle_preflight(self, client_socket: socket.socket,
                          request: HTTPRequest, body: RequestBody) -> None:
        """Answer an OPTIONS request with CORS headers and no body."""
        logger.debug(f"Preflight {request.path}")
        body.drain()

        response = HTTPResponse(status_code=204, status_message='No Content',
                                headers=[('Connection', 'close')])
        apply_cors_headers(response.headers, request.headers, self._config)
        client_socket.sendall(response.to_bytes())

    def _forward_request(self, client_socket: socket.socket,
                         request: HTTPRequest, body: RequestBody) -> None:
        """
        Forward the request upstream and stream the response back.

        Any failure before the response head reaches the client is turned
        into a 500 carrying CORS headers; after that point it can only be
        logged.

        Args:
            client_socket: Socket object for client connection
            request: Parsed request head
            body: Reader for the request body
        """
        try:
            target_uri = build_target_uri(self._config, request.path)
        except ValueError as e:
            logger.debug(f"Bad request target {request.path!r}: {e}")
            self._send_error(client_socket, request.headers, 400, f"Bad request: {e}")
            return

        logger.debug(f"{request.method} {request.path} -> {target_uri}")
        head_sent = False

        try:
            if request.expects_continue and not body.is_empty:
                client_socket.sendall(b'HTTP/1.1 100 Continue\r\n\r\n')

            outbound = requests.Request(
                method=request.method,
                url=target_uri,
                headers=fold_headers(copy_headers(request.headers, EXCLUDED_REQUEST_HEADERS)),
                data=None if body.is_empty else body
            ).prepare()

            with self._session.send(outbound, stream=True, allow_redirects=False,
                                    timeout=self._config.upstream_timeout) as upstream:
                response = HTTPResponse(
                    status_code=upstream.status_code,
                    status_message=upstream.reason or '',
                    headers=copy_headers(upstream.raw.headers.iteritems(),
                                         EXCLUDED_RESPONSE_HEADERS)
                )
                apply_cors_headers(response.headers, request.headers, self._config)
                set_header(response.headers, 'Connection', 'close')

                client_socket.sendall(response.head_bytes())
                head_sent = True

                # Raw bytes as they arrive; Content-Encoding stays accurate and
                # small streamed events are not held back
                while True:
                    chunk = upstream.raw.read1(self._config.buffer_size, decode_content=False)
                    if not chunk:
                        break
                    client_socket.sendall(chunk)

        except Exception as e:
            if head_sent:
                logger.error(f"Error streaming response from {target_uri}: {e}")
                return

            logger.error(f"Error forwarding request to {target_uri}: {e}")
            self._send_error(client_socket, request.headers, 500, f"Proxy error: {e}")
            try:
                body.drain()
            except (OSError, ValueError) as drain_error:
                logger.debug(f"Could not drain request body: {drain_error}")

    def _send_error(self, client_socket: socket.socket, request_headers: Headers,
                    status_code: int, message: str) -> None:
        """Send a plain-text error response carrying CORS headers."""
        response = HTTPResponse.create_error(status_code, message)
        apply_cors_headers(response.headers, request_headers, self._config)
        client_socket.sendall(response.to_bytes())
