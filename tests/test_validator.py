# tests/test_validator.py
"""Tests for imgproxy/core/validator.py — scheme and allowlist checks."""
from __future__ import annotations

import pytest

from imgproxy.core.errors import HostNotAllowed, InvalidURL
from imgproxy.core.validator import (
    AllowedHostSet,
    ParsedTarget,
    resolve_location,
    validate,
)


# ============================================================================
# AllowedHostSet
# ============================================================================

class TestAllowedHostSet:
    def test_from_csv_strips_and_skips_empty(self):
        hosts = AllowedHostSet.from_csv(" images.unsplash.com, ,plus.unsplash.com ,")
        assert len(hosts) == 2
        assert "images.unsplash.com" in hosts
        assert "plus.unsplash.com" in hosts

    def test_is_immutable(self, allowed_hosts):
        with pytest.raises(AttributeError):
            allowed_hosts._hosts = frozenset({"evil.example"})
        with pytest.raises(AttributeError):
            allowed_hosts.extra = 1

    def test_repr_does_not_leak_hosts(self, allowed_hosts):
        assert "unsplash" not in repr(allowed_hosts)

    def test_empty_set_is_falsy(self):
        assert not AllowedHostSet.from_csv("")


# ============================================================================
# validate()
# ============================================================================

class TestValidate:
    def test_accepts_allowlisted_https_url(self, allowed_hosts):
        target = validate("https://images.unsplash.com/photo-1?w=800", allowed_hosts)
        assert isinstance(target, ParsedTarget)
        assert target.host == "images.unsplash.com"
        assert target.origin == "https://images.unsplash.com"
        assert target.referer == "https://images.unsplash.com/"
        assert target.url == "https://images.unsplash.com/photo-1?w=800"

    def test_keeps_explicit_port_in_origin(self, allowed_hosts):
        target = validate("https://images.unsplash.com:443/a.jpg", allowed_hosts)
        assert target.host == "images.unsplash.com"
        assert target.origin == "https://images.unsplash.com:443"

    @pytest.mark.parametrize("raw", [
        "",
        "   ",
        "/relative/path.jpg",
        "images.unsplash.com/photo.jpg",
        "https://",
        "https:///photo.jpg",
        "https://images.unsplash.com:notaport/a.jpg",
        "https://[::1/a.jpg",
    ])
    def test_invalid_urls(self, allowed_hosts, raw):
        with pytest.raises(InvalidURL):
            validate(raw, allowed_hosts)

    def test_non_string_is_invalid(self, allowed_hosts):
        with pytest.raises(InvalidURL):
            validate(None, allowed_hosts)

    @pytest.mark.parametrize("raw", [
        "http://images.unsplash.com/photo.jpg",
        "ftp://images.unsplash.com/photo.jpg",
        "HTTPS://images.unsplash.com/photo.jpg",
    ])
    def test_scheme_must_be_exactly_https(self, allowed_hosts, raw):
        with pytest.raises(HostNotAllowed):
            validate(raw, allowed_hosts)

    @pytest.mark.parametrize("raw", [
        "https://evil.example/photo.jpg",
        "https://cdn.images.unsplash.com/photo.jpg",   # no subdomain matching
        "https://unsplash.com/photo.jpg",
        "https://images.unsplash.com.evil.example/a.jpg",
        "https://Images.Unsplash.com/photo.jpg",       # case-sensitive
        "https://images.unsplash.com./photo.jpg",      # trailing dot is a different name
        "https://127.0.0.1/photo.jpg",
        "https://images.unsplash.com@evil.example/a.jpg",
    ])
    def test_host_must_be_exact_member(self, allowed_hosts, raw):
        with pytest.raises(HostNotAllowed):
            validate(raw, allowed_hosts)

    def test_host_not_allowed_message_does_not_echo_allowlist(self, allowed_hosts):
        with pytest.raises(HostNotAllowed) as exc_info:
            validate("https://evil.example/a.jpg", allowed_hosts)
        payload = exc_info.value.to_payload()
        assert payload == {"error": "URL not allowed"}
        assert "unsplash" not in str(exc_info.value)

    def test_empty_allowlist_rejects_everything(self):
        with pytest.raises(HostNotAllowed):
            validate("https://images.unsplash.com/a.jpg", AllowedHostSet())

    @pytest.mark.parametrize("raw", [
        "https://user:pw@images.unsplash.com/a.jpg",
        "https://user@images.unsplash.com/a.jpg",
        "https://:pw@images.unsplash.com/a.jpg",
        "https://@images.unsplash.com/a.jpg",
    ])
    def test_credentials_for_allowed_host_are_invalid(self, allowed_hosts, raw):
        with pytest.raises(InvalidURL):
            validate(raw, allowed_hosts)


# ============================================================================
# resolve_location()
# ============================================================================

class TestResolveLocation:
    def _current(self, allowed_hosts):
        return validate("https://images.unsplash.com/dir/photo.jpg?x=1", allowed_hosts)

    def test_absolute_location_is_kept(self, allowed_hosts):
        current = self._current(allowed_hosts)
        assert resolve_location("https://plus.unsplash.com/p.jpg", current) == "https://plus.unsplash.com/p.jpg"

    def test_root_relative_location(self, allowed_hosts):
        current = self._current(allowed_hosts)
        assert resolve_location("/other.jpg", current) == "https://images.unsplash.com/other.jpg"

    def test_path_relative_location(self, allowed_hosts):
        current = self._current(allowed_hosts)
        assert resolve_location("next.jpg", current) == "https://images.unsplash.com/dir/next.jpg"

    def test_scheme_relative_location_keeps_https(self, allowed_hosts):
        current = self._current(allowed_hosts)
        assert resolve_location("//evil.example/x.jpg", current) == "https://evil.example/x.jpg"
