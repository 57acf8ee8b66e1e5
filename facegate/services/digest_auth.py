"""
HTTP Digest authentication (RFC 2617, MD5) for ISAPI devices.

Pure functions: the only randomness is the client nonce, which callers may
inject to get a deterministic header.
"""

import hashlib
import re
import secrets
from dataclasses import dataclass, field
from typing import Dict, Optional

from facegate.core.exceptions import DigestChallengeError

NONCE_COUNT = "00000001"

_PARAM_RE = re.compile(r'(\w+)\s*=\s*(?:"([^"]*)"|([^\s,]+))')


@dataclass(frozen=True)
class DeviceCredentials:
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class DigestChallenge:
    realm: str
    nonce: str
    qop: Optional[str] = None
    opaque: Optional[str] = None
    algorithm: Optional[str] = None


def _md5(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def new_cnonce() -> str:
    return secrets.token_hex(8)


def _parse_params(header: str) -> Dict[str, str]:
    body = header.strip()
    if body[:6].lower() == "digest":
        body = body[6:]
    params: Dict[str, str] = {}
    for key, quoted, bare in _PARAM_RE.findall(body):
        params[key.lower()] = quoted if quoted or not bare else bare
    return params


def _select_qop(raw: Optional[str]) -> Optional[str]:
    # Challenges may offer a list such as "auth,auth-int"
    if not raw:
        return None
    options = [q.strip() for q in raw.split(",") if q.strip()]
    if not options:
        return None
    return "auth" if "auth" in options else options[0]


def parse_challenge(www_authenticate: str) -> DigestChallenge:
    params = _parse_params(www_authenticate or "")
    realm = params.get("realm")
    nonce = params.get("nonce")
    if not realm or not nonce:
        raise DigestChallengeError(
            "Digest challenge is missing realm or nonce",
            {"challenge": www_authenticate},
        )
    algorithm = params.get("algorithm")
    if algorithm and algorithm.upper() != "MD5":
        raise DigestChallengeError(
            f"Unsupported digest algorithm: {algorithm}",
            {"algorithm": algorithm},
        )
    return DigestChallenge(
        realm=realm,
        nonce=nonce,
        qop=_select_qop(params.get("qop")),
        opaque=params.get("opaque"),
        algorithm=algorithm,
    )


def compute_response(
    challenge: DigestChallenge,
    method: str,
    uri: str,
    credentials: DeviceCredentials,
    cnonce: Optional[str] = None,
) -> str:
    ha1 = _md5(f"{credentials.username}:{challenge.realm}:{credentials.password}")
    ha2 = _md5(f"{method.upper()}:{uri}")
    if challenge.qop:
        return _md5(f"{ha1}:{challenge.nonce}:{NONCE_COUNT}:{cnonce}:{challenge.qop}:{ha2}")
    return _md5(f"{ha1}:{challenge.nonce}:{ha2}")


def compute_authorization_header(
    method: str,
    uri: str,
    www_authenticate: str,
    credentials: DeviceCredentials,
    cnonce: Optional[str] = None,
) -> str:
    """
    Build the ``Authorization`` header answering a ``WWW-Authenticate`` challenge.

    Args:
        method: HTTP method of the request being retried
        uri: request target exactly as sent (path plus query string)
        www_authenticate: the challenge header from the 401 response
        credentials: device username/password
        cnonce: client nonce; a fresh random one is generated when omitted

    Raises:
        DigestChallengeError: realm or nonce missing, or a non-MD5 algorithm
    """
    challenge = parse_challenge(www_authenticate)
    if challenge.qop and cnonce is None:
        cnonce = new_cnonce()
    response = compute_response(challenge, method, uri, credentials, cnonce)

    parts = [
        f'username="{credentials.username}"',
        f'realm="{challenge.realm}"',
        f'nonce="{challenge.nonce}"',
        f'uri="{uri}"',
        f'response="{response}"',
    ]
    if challenge.algorithm:
        parts.append(f"algorithm={challenge.algorithm}")
    if challenge.qop:
        parts.extend([f"qop={challenge.qop}", f"nc={NONCE_COUNT}", f'cnonce="{cnonce}"'])
    if challenge.opaque:
        parts.append(f'opaque="{challenge.opaque}"')
    return "Digest " + ", ".join(parts)
