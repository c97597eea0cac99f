from dataclasses import dataclass, field, fields
from typing import Any, Iterable, Optional, Tuple
from urllib.parse import parse_qsl, urlsplit
import json
import os

from requests.utils import requote_uri

MCP_HEADERS = ('Mcp-Session-Id', 'Mcp-Protocol-Version', 'Last-Event-Id')

DEFAULT_PORTS = {'http': 80, 'https': 443}


@dataclass(frozen=True)
class ProxyConfig:
    """Immutable configuration for the CORS proxy.

    The target URI is parsed once here so that request-time URI building
    never has to re-parse it.
    """
    target: str
    host: str = "0.0.0.0"
    port: int = 8080
    allow_credentials: bool = False
    extra_allowed_headers: Tuple[str, ...] = ()
    max_connections: int = 128
    buffer_size: int = 4096
    client_timeout: Optional[float] = 5.0
    upstream_timeout: Optional[float] = None

    scheme: str = field(init=False, repr=False)
    authority: str = field(init=False, repr=False)
    target_segments: Tuple[str, ...] = field(init=False, repr=False)
    target_query: Tuple[Tuple[str, str], ...] = field(init=False, repr=False)

    def __post_init__(self):
        parts = urlsplit(self.target)
        scheme = parts.scheme.lower()
        if scheme not in DEFAULT_PORTS:
            raise ValueError(f"Target scheme must be http or https: {self.target!r}")
        if not parts.hostname:
            raise ValueError(f"Target has no host: {self.target!r}")

        userinfo, _, hostport = parts.netloc.rpartition('@')
        if hostport.startswith('['):
            host = hostport[:hostport.index(']') + 1]
        else:
            host = hostport.split(':', 1)[0]
        # parts.port raises ValueError for a malformed port
        port = parts.port or DEFAULT_PORTS[scheme]
        authority = f"{userinfo}@{host}:{port}" if userinfo else f"{host}:{port}"

        names = (h.strip().lower() for h in self.extra_allowed_headers or ())
        extras = tuple(dict.fromkeys(h for h in names if h))

        object.__setattr__(self, 'scheme', scheme)
        object.__setattr__(self, 'authority', authority)
        object.__setattr__(self, 'target_segments',
                           tuple(s for s in parts.path.split('/') if s))
        object.__setattr__(self, 'target_query',
                           tuple(parse_qsl(requote_uri(parts.query), keep_blank_values=True,
                                           encoding='latin-1')))
        object.__setattr__(self, 'extra_allowed_headers', extras)

    @classmethod
    def mcp(cls, target: str, extra_allowed_headers: Iterable[str] = None,
            **kwargs) -> 'ProxyConfig':
        """
        Create a configuration pre-seeded with the MCP protocol headers.

        Args:
            target: Upstream base URI
            extra_allowed_headers: Further header names, added after the MCP ones
            **kwargs: Any other ProxyConfig field

        Returns:
            ProxyConfig allowing and exposing the MCP headers
        """
        headers = MCP_HEADERS + tuple(extra_allowed_headers or ())
        return cls(target=target, extra_allowed_headers=headers, **kwargs)

    @classmethod
    def from_file(cls, config_path: str) -> 'ProxyConfig':
        """
        Load configuration from a JSON file over the defaults.

        Args:
            config_path: Path to JSON configuration file

        Returns:
            ProxyConfig built from the file contents
        """
        if not os.path.exists(config_path):
            raise ValueError(f"Error loading config file: {config_path} does not exist")

        try:
            with open(config_path, 'r') as f:
                file_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ValueError(f"Error loading config file: {e}")

        if not isinstance(file_config, dict):
            raise ValueError("Error loading config file: expected a JSON object")

        file_config = dict(file_config)
        use_mcp = bool(file_config.pop('mcp', False))
        known = {f.name for f in fields(cls) if f.init}
        unknown = sorted(set(file_config) - known)
        if unknown:
            raise ValueError(f"Error loading config file: unknown keys {unknown}")
        if 'target' not in file_config:
            raise ValueError("Error loading config file: 'target' is required")

        if 'extra_allowed_headers' in file_config:
            file_config['extra_allowed_headers'] = tuple(file_config['extra_allowed_headers'])
        if use_mcp:
            return cls.mcp(**file_config)
        return cls(**file_config)

    def get(self, key: str) -> Any:
        """
        Get configuration value by key.

        Args:
            key: Configuration key

        Returns:
            Configuration value, or None for an unknown key
        """
        return getattr(self, key, None)

