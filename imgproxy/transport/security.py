# imgproxy/transport/security.py
"""
Access control and hardening for the proxy's HTTP surface.

- /metrics: Bearer METRICS_TOKEN, or internal network when no token is set
- Response headers for every reply, relayed images included
- Generic error text in production

Checks read the ``Settings`` the app was built with (``app.state.settings``)
and fall back to the process-wide ``settings`` outside an app.
"""
import hmac
import ipaddress
from functools import lru_cache

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from imgproxy.config import Settings, settings
from imgproxy.infra.logging_config import get_logger

logger = get_logger(__name__)

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network

metrics_bearer_scheme = HTTPBearer(
    scheme_name="Metrics Token",
    description="METRICS_TOKEN value (without the 'Bearer ' prefix)",
    auto_error=False,
)


def _settings_of(request: Request) -> Settings:
    """Settings of the app serving ``request``"""
    app_settings = getattr(request.app.state, "settings", None)
    if isinstance(app_settings, Settings):
        return app_settings
    return settings


@lru_cache(maxsize=8)
def _get_internal_networks(raw: str) -> tuple[IPNetwork, ...]:
    """INTERNAL_NETWORKS parsed once per value; invalid entries are logged and skipped."""
    networks: list[IPNetwork] = []
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError as e:
            logger.warning(f"Invalid CIDR in INTERNAL_NETWORKS: {entry} - {e}")
    return tuple(networks)


def _get_client_ip(request: Request, s: Settings | None = None) -> str:
    """
    Peer address, or the first X-Forwarded-For / X-Real-IP hop when
    TRUST_PROXY_HEADERS is on.  Without a trusted proxy in front those
    headers are attacker-controlled.
    """
    if s is None:
        s = _settings_of(request)
    peer = request.client.host if request.client else "unknown"
    if not s.trust_proxy_headers:
        return peer

    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    return real_ip.strip() if real_ip else peer


def _is_internal_ip(ip_str: str, s: Settings | None = None) -> bool:
    if s is None:
        s = settings
    try:
        ip = ipaddress.ip_address(ip_str)
    except ValueError:
        logger.warning(f"Invalid IP address format: {ip_str}")
        return False
    return any(ip in network for network in _get_internal_networks(s.internal_networks))


def require_internal_network(request: Request) -> None:
    """403 unless the client address is inside INTERNAL_NETWORKS"""
    s = _settings_of(request)
    client_ip = _get_client_ip(request, s)
    if _is_internal_ip(client_ip, s):
        return

    logger.warning(f"Access denied from non-internal IP: {client_ip}", extra={"client_ip": client_ip})
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def require_metrics_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(metrics_bearer_scheme),
) -> None:
    """
    Guard for /metrics.

    With METRICS_TOKEN set the token is mandatory, whatever the source
    address.  Without it, only internal networks get through:

        curl -H "Authorization: Bearer $METRICS_TOKEN" http://host/metrics
        curl http://localhost:8099/metrics
    """
    s = _settings_of(request)
    if not s.metrics_token:
        require_internal_network(request)
        return

    if credentials is None:
        logger.warning("Metrics endpoint accessed without token")
        raise _unauthorized("Authentication required")

    if not hmac.compare_digest(credentials.credentials, s.metrics_token):
        logger.warning("Invalid metrics token attempt")
        raise _unauthorized("Invalid credentials")


class SecurityHeaders:
    """OWASP response headers, tuned for a service that serves images cross-origin."""

    STATIC_HEADERS = {
        "X-Frame-Options": "DENY",
        # A relayed image must never be sniffed into HTML
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        # Even an image opened directly gets no script or style
        "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
        "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
        # Pages on other origins embed these images
        "Cross-Origin-Resource-Policy": "cross-origin",
    }

    @classmethod
    def add_security_headers(cls, response, s: Settings | None = None):
        """
        Apply the static set, HSTS outside dev, and no-store on JSON.

        Relayed images keep exactly the cache headers upstream sent, or none.
        """
        for name, value in cls.STATIC_HEADERS.items():
            response.headers[name] = value

        is_json = response.headers.get("Content-Type", "").startswith("application/json")
        if is_json and "Cache-Control" not in response.headers:
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"

        if s is None:
            s = settings
        if s.is_production or s.is_staging:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        if "Server" in response.headers:
            del response.headers["Server"]

        return response


_GENERIC_ERROR_TEXT = {
    "ValueError": "Invalid input",
    "KeyError": "Invalid request",
    "ConnectionError": "Service temporarily unavailable",
    "TimeoutError": "Request timeout",
    "ProxyTransportError": "Upstream unavailable",
}


def sanitize_error_message(error: Exception, is_production: bool) -> str:
    """Full text in dev; a fixed phrase per exception type in production."""
    if not is_production:
        return str(error)
    return _GENERIC_ERROR_TEXT.get(type(error).__name__, "An error occurred")
