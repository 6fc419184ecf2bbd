# tests/test_security.py
"""Tests for imgproxy/transport/security.py — security utilities."""
from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from imgproxy.core.errors import ProxyTransportError


def _request(host="1.2.3.4", headers=None):
    request = MagicMock()
    request.client.host = host
    request.headers = headers or {}
    return request


# ============================================================================
# Client IP / Internal network
# ============================================================================

class TestClientIP:
    @patch("imgproxy.transport.security.settings")
    def test_direct_connection(self, mock_settings):
        mock_settings.trust_proxy_headers = False
        from imgproxy.transport.security import _get_client_ip
        assert _get_client_ip(_request("1.2.3.4")) == "1.2.3.4"

    @patch("imgproxy.transport.security.settings")
    def test_x_forwarded_for(self, mock_settings):
        mock_settings.trust_proxy_headers = True
        from imgproxy.transport.security import _get_client_ip
        request = _request("172.17.0.1", {"X-Forwarded-For": "203.0.113.5, 10.0.0.1"})
        assert _get_client_ip(request) == "203.0.113.5"

    @patch("imgproxy.transport.security.settings")
    def test_x_real_ip_fallback(self, mock_settings):
        mock_settings.trust_proxy_headers = True
        from imgproxy.transport.security import _get_client_ip
        request = _request("172.17.0.1", {"X-Real-IP": "198.51.100.10"})
        assert _get_client_ip(request) == "198.51.100.10"

    @patch("imgproxy.transport.security.settings")
    def test_proxy_headers_not_trusted(self, mock_settings):
        mock_settings.trust_proxy_headers = False
        from imgproxy.transport.security import _get_client_ip
        request = _request("10.0.0.5", {"X-Forwarded-For": "evil.spoofed.ip"})
        assert _get_client_ip(request) == "10.0.0.5"


class TestInternalIP:
    def setup_method(self):
        from imgproxy.transport.security import _get_internal_networks
        _get_internal_networks.cache_clear()

    def teardown_method(self):
        from imgproxy.transport.security import _get_internal_networks
        _get_internal_networks.cache_clear()

    @pytest.mark.parametrize("ip", ["10.0.0.1", "172.16.0.1", "192.168.1.1", "127.0.0.1", "::1"])
    @patch("imgproxy.transport.security.settings")
    def test_internal_ranges(self, mock_settings, ip):
        mock_settings.internal_networks = "10.0.0.0/8,172.16.0.0/12,192.168.0.0/16,127.0.0.0/8,::1/128"
        from imgproxy.transport.security import _is_internal_ip
        assert _is_internal_ip(ip) is True

    @patch("imgproxy.transport.security.settings")
    def test_external_ip(self, mock_settings):
        mock_settings.internal_networks = "10.0.0.0/8,172.16.0.0/12,192.168.0.0/16,127.0.0.0/8"
        from imgproxy.transport.security import _is_internal_ip
        assert _is_internal_ip("8.8.8.8") is False

    @patch("imgproxy.transport.security.settings")
    def test_invalid_ip_format(self, mock_settings):
        mock_settings.internal_networks = "10.0.0.0/8"
        from imgproxy.transport.security import _is_internal_ip
        assert _is_internal_ip("not-an-ip") is False

    @patch("imgproxy.transport.security.settings")
    def test_invalid_cidr_is_skipped(self, mock_settings):
        mock_settings.internal_networks = "not-a-cidr, 10.0.0.0/8"
        from imgproxy.transport.security import _is_internal_ip
        assert _is_internal_ip("10.1.2.3") is True


# ============================================================================
# Metrics auth
# ============================================================================

class TestMetricsAuth:
    def setup_method(self):
        from imgproxy.transport.security import _get_internal_networks
        _get_internal_networks.cache_clear()

    def teardown_method(self):
        from imgproxy.transport.security import _get_internal_networks
        _get_internal_networks.cache_clear()

    @patch("imgproxy.transport.security.settings")
    def test_valid_token(self, mock_settings):
        mock_settings.metrics_token = "metrics-token-value"
        from imgproxy.transport.security import require_metrics_auth
        creds = HTTPAuthorizationCredentials(scheme="Bearer", credentials="metrics-token-value")
        assert require_metrics_auth(_request("8.8.8.8"), creds) is None

    @patch("imgproxy.transport.security.settings")
    def test_missing_token(self, mock_settings):
        mock_settings.metrics_token = "metrics-token-value"
        from imgproxy.transport.security import require_metrics_auth
        with pytest.raises(HTTPException) as exc_info:
            require_metrics_auth(_request("10.0.0.1"), None)
        assert exc_info.value.status_code == 401
        assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}

    @patch("imgproxy.transport.security.settings")
    def test_wrong_token(self, mock_settings):
        mock_settings.metrics_token = "metrics-token-value"
        from imgproxy.transport.security import require_metrics_auth
        creds = HTTPAuthorizationCredentials(scheme="Bearer", credentials="nope")
        with pytest.raises(HTTPException) as exc_info:
            require_metrics_auth(_request(), creds)
        assert exc_info.value.detail == "Invalid credentials"

    @patch("imgproxy.transport.security.settings")
    def test_internal_network_fallback(self, mock_settings):
        mock_settings.metrics_token = None
        mock_settings.trust_proxy_headers = False
        mock_settings.internal_networks = "10.0.0.0/8"
        from imgproxy.transport.security import require_metrics_auth
        assert require_metrics_auth(_request("10.2.3.4"), None) is None
        with pytest.raises(HTTPException) as exc_info:
            require_metrics_auth(_request("8.8.8.8"), None)
        assert exc_info.value.status_code == 403


# ============================================================================
# Security headers
# ============================================================================

class TestSecurityHeaders:
    def _response(self, headers=None):
        response = MagicMock()
        response.headers = dict(headers or {})
        return response

    @patch("imgproxy.transport.security.settings")
    def test_owasp_headers_present(self, mock_settings):
        mock_settings.is_production = False
        mock_settings.is_staging = False
        from imgproxy.transport.security import SecurityHeaders
        response = self._response()
        SecurityHeaders.add_security_headers(response)
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["Cross-Origin-Resource-Policy"] == "cross-origin"
        assert "Content-Security-Policy" in response.headers

    @patch("imgproxy.transport.security.settings")
    def test_json_gets_no_store(self, mock_settings):
        mock_settings.is_production = False
        mock_settings.is_staging = False
        from imgproxy.transport.security import SecurityHeaders
        response = self._response({"Content-Type": "application/json"})
        SecurityHeaders.add_security_headers(response)
        assert response.headers["Cache-Control"] == "no-store, no-cache, must-revalidate"

    @patch("imgproxy.transport.security.settings")
    def test_image_cache_headers_untouched(self, mock_settings):
        mock_settings.is_production = False
        mock_settings.is_staging = False
        from imgproxy.transport.security import SecurityHeaders
        bare = self._response({"Content-Type": "image/jpeg"})
        SecurityHeaders.add_security_headers(bare)
        assert "Cache-Control" not in bare.headers

        cached = self._response({"Content-Type": "image/jpeg", "Cache-Control": "max-age=60"})
        SecurityHeaders.add_security_headers(cached)
        assert cached.headers["Cache-Control"] == "max-age=60"

    @patch("imgproxy.transport.security.settings")
    def test_server_header_removed(self, mock_settings):
        mock_settings.is_production = False
        mock_settings.is_staging = False
        from imgproxy.transport.security import SecurityHeaders
        response = self._response({"Server": "uvicorn"})
        SecurityHeaders.add_security_headers(response)
        assert "Server" not in response.headers

    @patch("imgproxy.transport.security.settings")
    def test_hsts_in_production(self, mock_settings):
        mock_settings.is_production = True
        mock_settings.is_staging = False
        from imgproxy.transport.security import SecurityHeaders
        response = self._response()
        SecurityHeaders.add_security_headers(response)
        assert "Strict-Transport-Security" in response.headers

    @patch("imgproxy.transport.security.settings")
    def test_no_hsts_in_dev(self, mock_settings):
        mock_settings.is_production = False
        mock_settings.is_staging = False
        from imgproxy.transport.security import SecurityHeaders
        response = self._response()
        SecurityHeaders.add_security_headers(response)
        assert "Strict-Transport-Security" not in response.headers


# ============================================================================
# Error message sanitization
# ============================================================================

class TestSanitizeErrorMessage:
    def test_dev_shows_detail(self):
        from imgproxy.transport.security import sanitize_error_message
        err = ValueError("detailed info")
        assert "detailed info" in sanitize_error_message(err, is_production=False)

    def test_production_generic_message(self):
        from imgproxy.transport.security import sanitize_error_message
        err = ValueError("detailed info")
        msg = sanitize_error_message(err, is_production=True)
        assert msg == "Invalid input"
        assert "detailed" not in msg

    def test_production_transport_error(self):
        from imgproxy.transport.security import sanitize_error_message
        err = ProxyTransportError("getaddrinfo failed for 10.0.0.7")
        assert sanitize_error_message(err, is_production=True) == "Upstream unavailable"

    def test_production_unknown_error(self):
        from imgproxy.transport.security import sanitize_error_message
        assert sanitize_error_message(RuntimeError("x"), is_production=True) == "An error occurred"
