# imgproxy/core/validator.py
"""
Target URL validation.

Pure functions only: nothing here touches the network, so a target that
fails validation is guaranteed never to be fetched.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator
from urllib.parse import urljoin, urlsplit

from imgproxy.core.errors import HostNotAllowed, InvalidURL

# Hard upper bound on redirect hops for one client request
MAX_REDIRECTS = 5

SECURE_SCHEME = "https"


class AllowedHostSet:
    """
    Immutable set of exact hostnames permitted as proxy targets.

    Membership is exact and case-sensitive: ``Images.Unsplash.com`` does not
    match ``images.unsplash.com`` and ``cdn.images.unsplash.com`` does not
    match either.
    """

    __slots__ = ("_hosts",)

    def __init__(self, hosts: Iterable[str] = ()):
        object.__setattr__(self, "_hosts", frozenset(h for h in hosts if h))

    @classmethod
    def from_csv(cls, raw: str) -> "AllowedHostSet":
        """Parse comma-separated hostnames (whitespace around entries is ignored)."""
        return cls(part.strip() for part in raw.split(","))

    def __setattr__(self, name, value):
        raise AttributeError("AllowedHostSet is immutable")

    def __contains__(self, host: object) -> bool:
        return host in self._hosts

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._hosts))

    def __len__(self) -> int:
        return len(self._hosts)

    def __repr__(self) -> str:
        # Count only: keep the allowlist out of logs and tracebacks
        return f"AllowedHostSet(<{len(self._hosts)} hosts>)"


@dataclass(frozen=True)
class ParsedTarget:
    """A target URL that passed validation."""

    url: str
    scheme: str
    host: str
    origin: str

    @property
    def referer(self) -> str:
        """Referer matching the upstream's own origin."""
        return f"{self.origin}/"


def validate(raw_url: str, allowed_hosts: AllowedHostSet) -> ParsedTarget:
    """
    Check a candidate target against scheme and allowlist rules.

    Raises:
        InvalidURL: unparsable, not an absolute URL with a host, or
            carrying credentials for an allowlisted host.
        HostNotAllowed: scheme is not https, or host not in the allowlist.
    """
    if not isinstance(raw_url, str) or not raw_url.strip():
        raise InvalidURL()

    try:
        parts = urlsplit(raw_url.strip())
        # Accessing .port validates the netloc (raises on "host:abc")
        parts.port
        host = parts.hostname
    except ValueError as exc:
        raise InvalidURL(f"Unparsable URL: {exc}") from exc

    if not parts.scheme or not parts.netloc or not host:
        raise InvalidURL("URL must be absolute")

    # urlsplit lowercases the scheme; compare the raw prefix for an exact match
    raw_scheme = raw_url.strip().split(":", 1)[0]
    if raw_scheme != SECURE_SCHEME:
        raise HostNotAllowed(f"Scheme not allowed: {raw_scheme[:16]}")

    # hostname is lowercased by urlsplit; the allowlist is case-sensitive
    exact_host = _exact_hostname(parts.netloc)
    if exact_host not in allowed_hosts:
        raise HostNotAllowed("Host not allowed")

    # HTTP clients turn userinfo into an Authorization header
    if parts.username is not None or parts.password is not None:
        raise InvalidURL("Credentials in URL are not allowed")

    return ParsedTarget(
        url=parts.geturl(),
        scheme=parts.scheme,
        host=exact_host,
        origin=f"{parts.scheme}://{parts.netloc}",
    )


def resolve_location(location: str, current: ParsedTarget) -> str:
    """Resolve a Location header (absolute or relative) against the current target."""
    return urljoin(current.url, location.strip())


def _exact_hostname(netloc: str) -> str:
    """Hostname from a netloc with its original case preserved."""
    host = netloc.rsplit("@", 1)[-1]
    if host.startswith("["):
        return host[1:host.find("]")]
    return host.split(":", 1)[0]
