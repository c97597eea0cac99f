import unittest
import sys
import os

# Add the parent directory to the Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cors_proxy.config import ProxyConfig
from cors_proxy.cors import allowed_headers, apply_cors_headers, cors_headers
from cors_proxy.headers import copy_headers, fold_headers, get_header


class TestCorsHeaders(unittest.TestCase):
    """Test cases for the CORS header policy."""

    def setUp(self):
        self.config = ProxyConfig(target="http://localhost:8000")

    def test_wildcard_origin_without_credentials(self):
        # Arrange
        request_headers = [("Origin", "http://caller.com")]

        # Act
        headers = cors_headers(request_headers, self.config)

        # Assert
        self.assertEqual(get_header(headers, "Access-Control-Allow-Origin"), "*")
        self.assertIsNone(get_header(headers, "Access-Control-Allow-Credentials"))

    def test_origin_echoed_with_credentials(self):
        # Arrange
        config = ProxyConfig(target="http://localhost:8000", allow_credentials=True)
        request_headers = [("origin", "http://caller.com")]

        # Act
        headers = cors_headers(request_headers, config)

        # Assert
        self.assertEqual(get_header(headers, "Access-Control-Allow-Origin"), "http://caller.com")
        self.assertEqual(get_header(headers, "Access-Control-Allow-Credentials"), "true")

    def test_credentials_without_origin_falls_back_to_wildcard(self):
        config = ProxyConfig(target="http://localhost:8000", allow_credentials=True)

        headers = cors_headers([("Origin", "")], config)

        self.assertEqual(get_header(headers, "Access-Control-Allow-Origin"), "*")
        self.assertIsNone(get_header(headers, "Access-Control-Allow-Credentials"))

    def test_fixed_methods(self):
        headers = cors_headers([], self.config)

        self.assertEqual(
            get_header(headers, "Access-Control-Allow-Methods"),
            "GET, POST, PUT, DELETE, OPTIONS, PATCH"
        )

    def test_allowed_headers_merge(self):
        """Test defaults, configured extras and requested headers are all allowed."""
        # Arrange
        config = ProxyConfig(target="http://localhost:8000", extra_allowed_headers=["X-Api-Key"])
        request_headers = [("Access-Control-Request-Headers", " X-Custom , ,content-type,")]

        # Act
        names = allowed_headers(request_headers, config)

        # Assert
        self.assertEqual(
            names,
            ["Origin", "Content-Type", "Accept", "Authorization", "Authentication",
             "x-api-key", "X-Custom"]
        )

    def test_allow_headers_value_is_comma_joined(self):
        headers = cors_headers([], self.config)

        self.assertEqual(
            get_header(headers, "Access-Control-Allow-Headers"),
            "Origin, Content-Type, Accept, Authorization, Authentication"
        )

    def test_expose_headers(self):
        config = ProxyConfig.mcp(target="http://localhost:8000")

        headers = cors_headers([], config)

        self.assertEqual(
            get_header(headers, "Access-Control-Expose-Headers"),
            "authorization, www-authenticate, mcp-session-id, mcp-protocol-version, last-event-id"
        )

    def test_mcp_headers_allowed(self):
        config = ProxyConfig.mcp(target="http://localhost:8000")

        value = get_header(cors_headers([], config), "Access-Control-Allow-Headers").lower()

        self.assertIn("mcp-session-id", value)
        self.assertIn("mcp-protocol-version", value)
        self.assertIn("last-event-id", value)

    def test_apply_replaces_upstream_values(self):
        """Test upstream CORS headers are overridden, not duplicated."""
        # Arrange
        response_headers = [
            ("Content-Type", "application/json"),
            ("access-control-allow-origin", "https://other.example"),
            ("Access-Control-Allow-Credentials", "true"),
        ]

        # Act
        apply_cors_headers(response_headers, [], self.config)

        # Assert
        origins = [v for k, v in response_headers if k.lower() == "access-control-allow-origin"]
        self.assertEqual(origins, ["*"])
        self.assertIsNone(get_header(response_headers, "Access-Control-Allow-Credentials"))
        self.assertEqual(get_header(response_headers, "content-type"), "application/json")


class TestHeaderHelpers(unittest.TestCase):
    """Test cases for the header multi-map helpers."""

    def test_copy_skips_excluded_and_invalid(self):
        # Arrange
        source = [
            ("Host", "localhost:8080"),
            ("X-Good", "yes"),
            ("X-Bad", "line\r\nbreak"),
            ("Set-Cookie", "a=1"),
            ("Set-Cookie", "b=2"),
        ]

        # Act
        copied = copy_headers(source, exclude=("host",))

        # Assert
        self.assertEqual(copied, [("X-Good", "yes"), ("Set-Cookie", "a=1"), ("Set-Cookie", "b=2")])

    def test_fold_joins_repeated_lines(self):
        folded = fold_headers([("Accept", "a"), ("accept", "b"), ("Cookie", "x=1"), ("Cookie", "y=2")])

        self.assertEqual(folded["Accept"], "a, b")
        self.assertEqual(folded["cookie"], "x=1; y=2")


if __name__ == '__main__':
    unittest.main()
