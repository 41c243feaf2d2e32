# Tests for PKCE helpers.
# Created: 2026-03-02

import base64
import hashlib

from tokenwarden.oauth2.pkce import (
    compute_challenge,
    generate_pkce_pair,
    is_well_formed,
    verify_pkce,
)


def test_compute_challenge_matches_rfc7636_example():
    # RFC 7636 Appendix B
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
    assert compute_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def test_challenge_is_unpadded_base64url_sha256():
    verifier, challenge = generate_pkce_pair()
    expected = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest())
    assert challenge == expected.rstrip(b"=").decode()
    assert "=" not in challenge


def test_generated_verifier_is_well_formed():
    verifier, challenge = generate_pkce_pair()
    assert 43 <= len(verifier) <= 128
    assert is_well_formed(verifier)
    assert is_well_formed(challenge)


def test_verify_accepts_exact_verifier():
    verifier, challenge = generate_pkce_pair()
    assert verify_pkce(verifier, challenge)


def test_verify_rejects_one_character_change():
    verifier, challenge = generate_pkce_pair()
    flipped = ("A" if verifier[-1] != "A" else "B")
    assert not verify_pkce(verifier[:-1] + flipped, challenge)


def test_verify_rejects_plain_method():
    verifier, _ = generate_pkce_pair()
    assert not verify_pkce(verifier, verifier, method="plain")


def test_well_formed_bounds():
    assert not is_well_formed("a" * 42)
    assert is_well_formed("a" * 43)
    assert is_well_formed("a" * 128)
    assert not is_well_formed("a" * 129)
    assert not is_well_formed("a" * 42 + "!")
    assert not is_well_formed("")
    assert not is_well_formed(None)
