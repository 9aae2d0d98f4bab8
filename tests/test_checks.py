"""
Local challenge pre-checks: HTTP via `responses`, DNS via a mocked resolver.
"""
from __future__ import annotations

from unittest.mock import MagicMock

import dns.resolver
import requests
import responses as resp_lib

from acme_order.checks import LocalChallengeChecker

TOKEN = "tok123"
KEY_AUTH = "tok123.thumbprint"
URL = f"http://example.org/.well-known/acme-challenge/{TOKEN}"


# ─── HTTP-01 ──────────────────────────────────────────────────────────────────


@resp_lib.activate
def test_http_check_passes_on_matching_body():
    resp_lib.add(resp_lib.GET, URL, body=KEY_AUTH + "\n", status=200)
    assert LocalChallengeChecker().check_http("example.org", TOKEN, KEY_AUTH) is True


@resp_lib.activate
def test_http_check_fails_on_wrong_body():
    resp_lib.add(resp_lib.GET, URL, body="something else", status=200)
    assert LocalChallengeChecker().check_http("example.org", TOKEN, KEY_AUTH) is False


@resp_lib.activate
def test_http_check_fails_on_404():
    resp_lib.add(resp_lib.GET, URL, body=KEY_AUTH, status=404)
    assert LocalChallengeChecker().check_http("example.org", TOKEN, KEY_AUTH) is False


@resp_lib.activate
def test_http_check_fails_on_connection_error():
    resp_lib.add(resp_lib.GET, URL, body=requests.ConnectionError("refused"))
    assert LocalChallengeChecker().check_http("example.org", TOKEN, KEY_AUTH) is False


# ─── DNS-01 ───────────────────────────────────────────────────────────────────


def _resolver_returning(*values: str) -> MagicMock:
    resolver = MagicMock(spec=dns.resolver.Resolver)
    answer = []
    for value in values:
        rdata = MagicMock()
        rdata.strings = [value.encode()]
        answer.append(rdata)
    resolver.resolve.return_value = answer
    return resolver


def test_dns_check_finds_digest():
    resolver = _resolver_returning("other", "digest-value")
    checker = LocalChallengeChecker(resolver=resolver)

    assert checker.check_dns("example.org", "digest-value") is True
    resolver.resolve.assert_called_once_with("_acme-challenge.example.org", "TXT")


def test_dns_check_strips_wildcard():
    resolver = _resolver_returning("digest-value")
    LocalChallengeChecker(resolver=resolver).check_dns("*.example.org", "digest-value")
    resolver.resolve.assert_called_once_with("_acme-challenge.example.org", "TXT")


def test_dns_check_missing_value():
    resolver = _resolver_returning("stale-value")
    assert LocalChallengeChecker(resolver=resolver).check_dns("example.org", "digest-value") is False


def test_dns_check_nxdomain():
    resolver = MagicMock(spec=dns.resolver.Resolver)
    resolver.resolve.side_effect = dns.resolver.NXDOMAIN()
    assert LocalChallengeChecker(resolver=resolver).check_dns("example.org", "digest-value") is False
