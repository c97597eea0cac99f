import select
import socket
import threading
import logging
from http.cookiejar import DefaultCookiePolicy
from typing import Iterable, Optional, Set, Tuple

import requests
from requests.adapters import HTTPAdapter

from .config import ProxyConfig
from .handler import RequestHandler

logger = logging.getLogger(__name__)


class ProxyServer:
    """Core server implementation for the CORS proxy."""

    # How often the accept loop re-checks whether it should stop
    poll_interval = 0.1

    def __init__(self, target: str, host: str = "0.0.0.0", port: int = 8080,
                 allow_credentials: bool = False,
                 extra_allowed_headers: Iterable[str] = None, **options):
        """
        Initialize the proxy server.

        Args:
            target: Upstream base URI requests are forwarded to
            host: Host address to bind the proxy
            port: Port number to listen on (0 picks an ephemeral port)
            allow_credentials: Echo the caller's Origin and allow credentials
            extra_allowed_headers: Additional header names to allow and expose
            **options: Further ProxyConfig fields (timeouts, buffer size, ...)
        """
        self._setup(ProxyConfig(
            target=target,
            host=host,
            port=port,
            allow_credentials=allow_credentials,
            extra_allowed_headers=tuple(extra_allowed_headers or ()),
            **options
        ))

    def _setup(self, config: ProxyConfig) -> None:
        self._config = config
        self._lock = threading.Lock()
        self._server_socket: Optional[socket.socket] = None
        self._session: Optional[requests.Session] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._connections: Set[socket.socket] = set()
        self._connections_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: ProxyConfig) -> 'ProxyServer':
        """Create a proxy server from an existing configuration."""
        server = cls.__new__(cls)
        server._setup(config)
        return server

    @classmethod
    def mcp(cls, target: str, extra_allowed_headers: Iterable[str] = None,
            **kwargs) -> 'ProxyServer':
        """Create a proxy server that also allows and exposes the MCP headers."""
        return cls.from_config(ProxyConfig.mcp(target, extra_allowed_headers, **kwargs))

    @property
    def config(self) -> ProxyConfig:
        """Get the proxy configuration."""
        return self._config

    @property
    def target(self) -> str:
        """Get the upstream target URI."""
        return self._config.target

    @property
    def host(self) -> str:
        """Get the host address."""
        return self._config.host

    @property
    def port(self) -> int:
        """Get the configured port number."""
        return self._config.port

    @property
    def allow_credentials(self) -> bool:
        return self._config.allow_credentials

    @property
    def is_running(self) -> bool:
        """Whether the proxy is bound and accepting connections."""
        return self._server_socket is not None

    @property
    def bound_port(self) -> int:
        """
        Get the port the proxy is actually bound to.

        Raises:
            RuntimeError: If the proxy is not running
        """
        server_socket = self._server_socket
        if server_socket is None:
            raise RuntimeError("Proxy is not running")
        return server_socket.getsockname()[1]

    def start(self) -> None:
        """
        Start the proxy server.

        Returns once the listening socket accepts connections. Calling start
        on a running proxy does nothing.

        Raises:
            OSError: If the socket cannot be bound
        """
        with self._lock:
            if self._server_socket is not None:
                return

            family = socket.AF_INET6 if ':' in self.host else socket.AF_INET
            server_socket = socket.socket(family, socket.SOCK_STREAM)
            server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            try:
                server_socket.bind((self.host, self.port))
                server_socket.listen(self._config.max_connections)
            except OSError:
                server_socket.close()
                raise

            session = self._create_session()
            handler = RequestHandler(self._config, session)

            self._stop_event = threading.Event()
            self._server_socket = server_socket
            self._session = session
            self._accept_thread = threading.Thread(
                target=self._serve_forever,
                args=(server_socket, handler, self._stop_event),
                name=f"cors-proxy-{self.bound_port}"
            )
            self._accept_thread.daemon = True
            self._accept_thread.start()

            logger.info(f"CORS proxy started on {self.host}:{self.bound_port} -> {self.target}")

    def stop(self) -> None:
        """
        Stop the proxy server.

        Connections still in flight are shut down rather than drained.
        Calling stop on a stopped proxy does nothing.
        """
        with self._lock:
            if self._server_socket is None:
                return

            self._stop_event.set()
            self._accept_thread.join(timeout=5)
            self._server_socket.close()

            with self._connections_lock:
                connections = list(self._connections)
                self._connections.clear()
            for client_socket in connections:
                try:
                    client_socket.shutdown(socket.SHUT_RDWR)
                except OSError:
                    pass  # already closed by its handler

            self._session.close()

            self._server_socket = None
            self._session = None
            self._accept_thread = None
            logger.info("CORS proxy stopped")

    def _create_session(self) -> requests.Session:
        """Create the outbound session shared by all exchanges."""
        session = requests.Session()
        # No environment proxies, and no cookies kept between exchanges
        session.trust_env = False
        session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))

        adapter = HTTPAdapter(pool_maxsize=self._config.max_connections)
        session.mount('http://', adapter)
        session.mount('https://', adapter)
        return session

    def _serve_forever(self, server_socket: socket.socket, handler: RequestHandler,
                       stop_event: threading.Event) -> None:
        """Accept connections until stopped, one thread per client."""
        while not stop_event.is_set():
            try:
                ready, _, _ = select.select([server_socket], [], [], self.poll_interval)
                if not ready:
                    continue
                client_socket, client_address = server_socket.accept()
            except OSError as e:
                if not stop_event.is_set():
                    logger.error(f"Server error: {e}")
                    # back off so a persistent error (e.g. EMFILE) does not spin
                    stop_event.wait(self.poll_interval)
                continue

            with self._connections_lock:
                self._connections.add(client_socket)

            # Handle each client in a separate thread
            thread = threading.Thread(
                target=self._handle_client,
                args=(handler, client_socket, client_address)
            )
            thread.daemon = True
            thread.start()

    def _handle_client(self, handler: RequestHandler, client_socket: socket.socket,
                       client_address: Tuple[str, int]) -> None:
        try:
            handler.handle_client(client_socket, client_address)
        finally:
            with self._connections_lock:
                self._connections.discard(client_socket)
