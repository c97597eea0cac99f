"""
A development CORS proxy: forwards requests to one upstream target and adds
permissive CORS headers to every response.
"""

from .server import ProxyServer
from .handler import RequestHandler
from .models import HTTPRequest, HTTPResponse, RequestBody
from .config import ProxyConfig, MCP_HEADERS
from .uri import build_target_uri
from .cors import cors_headers, apply_cors_headers

__all__ = ['ProxyServer', 'RequestHandler', 'HTTPRequest', 'HTTPResponse', 'RequestBody',
           'ProxyConfig', 'MCP_HEADERS', 'build_target_uri', 'cors_headers', 'apply_cors_headers']
