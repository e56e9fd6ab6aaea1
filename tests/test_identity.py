"""
Tests for identity hashing and client address extraction.
"""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from identity import (
    IDENTITY_TOKEN_LENGTH,
    extract_client_ip,
    hash_identity,
    load_trusted_proxies,
    token_prefix,
    validate_ip_address,
)


class TestHashIdentity:
    def test_deterministic(self):
        assert hash_identity("203.0.113.7", "salt") == hash_identity("203.0.113.7", "salt")

    def test_hex_of_expected_length(self):
        token = hash_identity("203.0.113.7", "salt")
        assert len(token) == IDENTITY_TOKEN_LENGTH
        int(token, 16)

    def test_salt_changes_token(self):
        assert hash_identity("203.0.113.7", "a") != hash_identity("203.0.113.7", "b")

    def test_identity_changes_token(self):
        assert hash_identity("203.0.113.7", "salt") != hash_identity("203.0.113.8", "salt")

    def test_does_not_contain_raw_identity(self):
        assert "203.0.113.7" not in hash_identity("203.0.113.7", "salt")

    def test_empty_salt_rejected(self):
        with pytest.raises(ValueError):
            hash_identity("203.0.113.7", "")
        with pytest.raises(ValueError):
            hash_identity("203.0.113.7", "   ")


class TestExtractClientIp:
    PROXY = "10.0.0.1"
    TRUSTED = frozenset({"10.0.0.1", "10.0.0.5"})

    @pytest.mark.parametrize(
        "headers",
        [
            {"CF-Connecting-IP": "198.51.100.1"},
            {"X-Forwarded-For": "198.51.100.2"},
            {"X-Real-IP": "198.51.100.3"},
        ],
    )
    def test_headers_ignored_from_untrusted_peer(self, headers):
        assert extract_client_ip(headers, "9.9.9.9", self.TRUSTED) == "9.9.9.9"

    def test_headers_ignored_without_trusted_proxies(self):
        headers = {"X-Forwarded-For": "198.51.100.2"}
        assert extract_client_ip(headers, self.PROXY) == self.PROXY

    def test_cloudflare_header_from_trusted_peer(self):
        headers = {
            "CF-Connecting-IP": "198.51.100.1",
            "X-Forwarded-For": "198.51.100.2",
            "X-Real-IP": "198.51.100.3",
        }
        assert extract_client_ip(headers, self.PROXY, self.TRUSTED) == "198.51.100.1"

    def test_rightmost_untrusted_forwarded_hop(self):
        headers = {"X-Forwarded-For": "1.1.1.1, 198.51.100.2, 10.0.0.5"}
        assert extract_client_ip(headers, self.PROXY, self.TRUSTED) == "198.51.100.2"

    def test_all_forwarded_hops_trusted(self):
        headers = {"X-Forwarded-For": "10.0.0.5, 10.0.0.1"}
        assert extract_client_ip(headers, self.PROXY, self.TRUSTED) == "10.0.0.5"

    def test_invalid_candidates_skipped(self):
        headers = {"CF-Connecting-IP": "not-an-ip", "X-Forwarded-For": "garbage, 198.51.100.2"}
        assert extract_client_ip(headers, self.PROXY, self.TRUSTED) == "198.51.100.2"

    def test_invalid_headers_fall_back_to_peer(self):
        headers = {"X-Real-IP": "localhost"}
        assert extract_client_ip(headers, self.PROXY, self.TRUSTED) == self.PROXY

    def test_real_ip(self):
        headers = {"X-Real-IP": " 198.51.100.3 "}
        assert extract_client_ip(headers, self.PROXY, self.TRUSTED) == "198.51.100.3"

    def test_falls_back_to_remote_addr(self):
        assert extract_client_ip({}, "192.0.2.10") == "192.0.2.10"

    def test_nothing_available(self):
        assert extract_client_ip({}) == ""


class TestLoadTrustedProxies:
    def test_parses_list(self):
        assert load_trusted_proxies(" 10.0.0.1, ,10.0.0.2 ") == frozenset({"10.0.0.1", "10.0.0.2"})

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("TRUSTED_PROXIES", "10.0.0.9")
        assert load_trusted_proxies() == frozenset({"10.0.0.9"})

    def test_empty_by_default(self, monkeypatch):
        monkeypatch.delenv("TRUSTED_PROXIES", raising=False)
        assert load_trusted_proxies() == frozenset()


class TestHelpers:
    def test_validate_ip_address(self):
        assert validate_ip_address("192.0.2.1")
        assert validate_ip_address("2001:db8::1")
        assert not validate_ip_address("not-an-ip")
        assert not validate_ip_address("")

    def test_token_prefix(self):
        assert token_prefix("abcdef0123456789") == "abcdef01"
