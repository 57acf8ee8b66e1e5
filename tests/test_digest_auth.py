import hashlib
import re

import pytest

from facegate.core.exceptions import DigestChallengeError
from facegate.services.digest_auth import (
    DeviceCredentials,
    compute_authorization_header,
    parse_challenge,
)

RFC_CHALLENGE = (
    'Digest realm="testrealm@host.com", qop="auth,auth-int", '
    'nonce="dcd98b7102dd2f0e8b11d0f600bfb0c093", opaque="5ccc069c403ebaf9f0171e9517f40e41"'
)
MUFASA = DeviceCredentials("Mufasa", "Circle Of Life")


def _params(header: str) -> dict:
    return {k: a or b for k, a, b in re.findall(r'(\w+)=(?:"([^"]*)"|([^\s,]+))', header)}


def _md5(s: str) -> str:
    return hashlib.md5(s.encode()).hexdigest()


def test_rfc2617_reference_vector():
    header = compute_authorization_header("GET", "/dir/index.html", RFC_CHALLENGE, MUFASA, cnonce="0a4f113b")
    params = _params(header)
    assert header.startswith("Digest ")
    assert params["response"] == "6629fae49393a05397450978507c4ef1"
    assert params["qop"] == "auth"
    assert params["nc"] == "00000001"
    assert params["cnonce"] == "0a4f113b"
    assert params["opaque"] == "5ccc069c403ebaf9f0171e9517f40e41"
    assert params["uri"] == "/dir/index.html"


def test_without_qop_uses_legacy_response_and_omits_qop_fields():
    challenge = 'Digest realm="IP Camera", nonce="abc123"'
    header = compute_authorization_header("PUT", "/ISAPI/System/deviceInfo", challenge, DeviceCredentials("admin", "pw"))
    params = _params(header)

    ha1 = _md5("admin:IP Camera:pw")
    ha2 = _md5("PUT:/ISAPI/System/deviceInfo")
    assert params["response"] == _md5(f"{ha1}:abc123:{ha2}")
    for absent in ("qop", "nc", "cnonce", "opaque"):
        assert absent not in params


def test_deterministic_for_fixed_cnonce():
    a = compute_authorization_header("GET", "/x?y=1", RFC_CHALLENGE, MUFASA, cnonce="deadbeefdeadbeef")
    b = compute_authorization_header("GET", "/x?y=1", RFC_CHALLENGE, MUFASA, cnonce="deadbeefdeadbeef")
    assert a == b


@pytest.mark.parametrize(
    "challenge",
    [RFC_CHALLENGE, 'Digest realm="r", nonce="n"'],
    ids=["qop", "no-qop"],
)
def test_password_changes_response(challenge):
    one = _params(compute_authorization_header("GET", "/a", challenge, DeviceCredentials("u", "one"), cnonce="00"))
    two = _params(compute_authorization_header("GET", "/a", challenge, DeviceCredentials("u", "two"), cnonce="00"))
    assert one["response"] != two["response"]


def test_random_cnonce_is_16_hex_chars():
    params = _params(compute_authorization_header("GET", "/", RFC_CHALLENGE, MUFASA))
    assert re.fullmatch(r"[0-9a-f]{16}", params["cnonce"])


def test_unquoted_tokens_and_algorithm_echo():
    challenge = 'Digest realm="cam", nonce="n1", qop=auth, algorithm=MD5'
    challenge_obj = parse_challenge(challenge)
    assert challenge_obj.qop == "auth"
    assert challenge_obj.algorithm == "MD5"
    header = compute_authorization_header("GET", "/", challenge, MUFASA, cnonce="ab")
    assert "algorithm=MD5" in header


@pytest.mark.parametrize(
    "challenge",
    [
        'Digest nonce="abc"',
        'Digest realm="cam"',
        "Basic realm=\"cam\"",
        "",
    ],
)
def test_missing_realm_or_nonce_raises(challenge):
    with pytest.raises(DigestChallengeError):
        compute_authorization_header("GET", "/", challenge, MUFASA)


def test_unsupported_algorithm_raises():
    with pytest.raises(DigestChallengeError):
        parse_challenge('Digest realm="cam", nonce="n", algorithm=SHA-256')


def test_credentials_repr_hides_password():
    assert "Circle Of Life" not in repr(MUFASA)
