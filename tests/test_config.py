import dataclasses
import json
import os
import sys
import tempfile
import unittest

# Add the parent directory to the Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cors_proxy.config import ProxyConfig


class TestProxyConfig(unittest.TestCase):
    """Test cases for ProxyConfig."""

    def test_defaults(self):
        config = ProxyConfig(target="http://localhost:8000")

        self.assertEqual(config.get("host"), "0.0.0.0")
        self.assertEqual(config.get("port"), 8080)
        self.assertEqual(config.get("max_connections"), 128)
        self.assertEqual(config.get("buffer_size"), 4096)
        self.assertIsNone(config.get("upstream_timeout"))
        self.assertIsNone(config.get("missing"))

    def test_target_is_pre_parsed(self):
        # Act
        config = ProxyConfig(target="HTTPS://api.example.com/v1//users/?a=1&b=")

        # Assert
        self.assertEqual(config.scheme, "https")
        self.assertEqual(config.authority, "api.example.com:443")
        self.assertEqual(config.target_segments, ("v1", "users"))
        self.assertEqual(config.target_query, (("a", "1"), ("b", "")))

    def test_rejects_non_http_scheme(self):
        with self.assertRaises(ValueError):
            ProxyConfig(target="ftp://example.com/")
        with self.assertRaises(ValueError):
            ProxyConfig(target="example.com/api")

    def test_rejects_missing_host(self):
        with self.assertRaises(ValueError):
            ProxyConfig(target="http:///path")

    def test_extra_headers_normalized(self):
        config = ProxyConfig(
            target="http://localhost:8000",
            extra_allowed_headers=["X-One", " x-one ", "", "X-Two"]
        )

        self.assertEqual(config.extra_allowed_headers, ("x-one", "x-two"))

    def test_immutable(self):
        config = ProxyConfig(target="http://localhost:8000")

        with self.assertRaises(dataclasses.FrozenInstanceError):
            config.port = 9000

    def test_mcp_preset(self):
        config = ProxyConfig.mcp(target="http://localhost:8000", extra_allowed_headers=["X-Mine"],
                                 allow_credentials=True)

        self.assertEqual(
            config.extra_allowed_headers,
            ("mcp-session-id", "mcp-protocol-version", "last-event-id", "x-mine")
        )
        self.assertTrue(config.allow_credentials)


class TestConfigFile(unittest.TestCase):
    """Test cases for loading configuration from JSON files."""

    def _write_config(self, content: str) -> str:
        handle, path = tempfile.mkstemp(suffix=".json")
        with os.fdopen(handle, "w") as f:
            f.write(content)
        self.addCleanup(os.remove, path)
        return path

    def test_load_config_file(self):
        # Arrange
        path = self._write_config(json.dumps({
            "target": "http://localhost:9000/api",
            "port": 0,
            "allow_credentials": True,
            "extra_allowed_headers": ["X-Trace-Id"],
            "mcp": True
        }))

        # Act
        config = ProxyConfig.from_file(path)

        # Assert
        self.assertEqual(config.target, "http://localhost:9000/api")
        self.assertEqual(config.port, 0)
        self.assertEqual(config.host, "0.0.0.0")
        self.assertTrue(config.allow_credentials)
        self.assertEqual(config.extra_allowed_headers[-1], "x-trace-id")
        self.assertIn("mcp-session-id", config.extra_allowed_headers)

    def test_missing_file(self):
        with self.assertRaises(ValueError):
            ProxyConfig.from_file("/nonexistent/cors-proxy.json")

    def test_invalid_json(self):
        path = self._write_config("{not json")

        with self.assertRaises(ValueError):
            ProxyConfig.from_file(path)

    def test_missing_target(self):
        path = self._write_config(json.dumps({"port": 8000}))

        with self.assertRaises(ValueError):
            ProxyConfig.from_file(path)

    def test_unknown_keys(self):
        path = self._write_config(json.dumps({"target": "http://localhost", "backend_servers": {}}))

        with self.assertRaises(ValueError):
            ProxyConfig.from_file(path)


if __name__ == '__main__':
    unittest.main()
