from __future__ import annotations

import re

from lawlzer.auth.util import (
    fingerprint,
    new_pkce_pair,
    new_state,
    pkce_challenge,
    same_origin_path,
    sanitize_next_path,
)

_HEX = re.compile(r"^[0-9a-f]+$")


def test_state_is_16_random_bytes_hex() -> None:
    a, b = new_state(), new_state()
    assert len(a) == 32 and _HEX.match(a)
    assert a != b


def test_pkce_pair_matches_s256_challenge() -> None:
    verifier, challenge = new_pkce_pair()
    assert len(verifier) == 64 and _HEX.match(verifier)
    assert challenge == pkce_challenge(verifier)
    assert "=" not in challenge


def test_pkce_challenge_rfc7636_vector() -> None:
    assert pkce_challenge("dBjftJeZ4CVP-mJ92K9eqOB5XX3q9y8hVeNnrdgdQnQ") == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def test_sanitize_next_path_blocks_open_redirects() -> None:
    assert sanitize_next_path("/cases/1?tab=notes") == "/cases/1?tab=notes"
    assert sanitize_next_path("https://evil.example") == "/"
    assert sanitize_next_path("//evil.example") == "/"
    assert sanitize_next_path("/\\evil.example") == "/"
    assert sanitize_next_path("") == "/"
    assert sanitize_next_path(None) == "/"
    assert sanitize_next_path("/a\r\nSet-Cookie: x=1") == "/aSet-Cookie: x=1"
    # Line breaks and tabs are dropped before the prefix checks, so they can't smuggle `//`.
    assert sanitize_next_path("/\r/evil.example") == "/"
    assert sanitize_next_path("/\n/evil.example") == "/"
    assert sanitize_next_path("/\t\\evil.example") == "/"


def test_same_origin_path_only_accepts_our_origin() -> None:
    base = "https://lawlzer.test"
    assert same_origin_path("https://lawlzer.test/laws/42?x=1", base) == "/laws/42?x=1"
    assert same_origin_path("https://lawlzer.test", base) == "/"
    assert same_origin_path("https://evil.example/laws", base) is None
    assert same_origin_path("http://lawlzer.test/laws", base) is None
    assert same_origin_path(None, base) is None
    assert same_origin_path("https://lawlzer.test/laws", None) is None


def test_fingerprint_is_short_and_stable() -> None:
    sid = "ab" * 32
    fp = fingerprint(sid)
    assert fp == fingerprint(sid)
    assert len(fp) == 12
    assert fp not in sid
