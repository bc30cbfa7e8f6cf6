"""
Verification of result tokens issued by the remote attestation service.

The service signs its verdict as an ES384 JWT. The signing certificate is
published in a JWKS document on the same host as the verifier endpoint, keyed
by the token's `kid` header.
"""

import base64
import binascii
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import jwt
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from .types import (
    DEFAULT_TIMEOUT,
    JWKS_PATH,
    KEYS_KEY,
    KID_KEY,
    OVERALL_ATTESTATION_RESULT_CLAIM,
    TOKEN_ALGORITHM,
    X5C_KEY,
    AttestationClaims,
    CertificateDecodeError,
    ClaimsError,
    InvalidJwtTokenError,
    SignatureVerificationError,
)
from .utils import get_json

logger = logging.getLogger(__name__)


def extract_result_token(response_json: Any) -> str:
    """
    Pull the overall result token out of a verifier response.

    The response is a list whose first element is a ``[header, token]`` pair;
    later elements carry per-device detail and are ignored.

    Raises:
        InvalidJwtTokenError: If the response has any other shape
    """
    if not isinstance(response_json, list) or not response_json:
        raise InvalidJwtTokenError("Token structure invalid: response is not a non-empty array")
    overall = response_json[0]
    if not isinstance(overall, list) or len(overall) < 2:
        raise InvalidJwtTokenError("Token structure invalid: first element is not a [header, token] array")
    token = overall[1]
    if not isinstance(token, str):
        raise InvalidJwtTokenError("Token structure invalid: second element is not a string")
    return token


def create_jwks_url(verifier_url: str) -> str:
    """Derive ``scheme://host[:port]/.well-known/jwks.json`` from a verifier URL"""
    parsed = urlparse(verifier_url)
    try:
        port = parsed.port
    except ValueError as e:
        raise InvalidJwtTokenError(f"Invalid verifier URL {verifier_url!r}: {e}") from e
    host = parsed.hostname
    if not parsed.scheme or not host:
        raise InvalidJwtTokenError(f"Invalid verifier URL {verifier_url!r}")

    if ":" in host:
        host = f"[{host}]"
    port_part = f":{port}" if port is not None else ""
    return f"{parsed.scheme}://{host}{port_part}{JWKS_PATH}"


def get_matching_key(jwks: Any, kid: str) -> Optional[Dict[str, Any]]:
    """Find the key-set entry whose kid matches, or None"""
    if not isinstance(jwks, dict):
        return None
    keys = jwks.get(KEYS_KEY)
    if not isinstance(keys, list):
        return None
    for key in keys:
        if isinstance(key, dict) and key.get(KID_KEY) == kid:
            return key
    return None


def available_kids(jwks: Any) -> List[str]:
    """Key ids published in a key set, for diagnostics"""
    if not isinstance(jwks, dict) or not isinstance(jwks.get(KEYS_KEY), list):
        return []
    return [k[KID_KEY] for k in jwks[KEYS_KEY] if isinstance(k, dict) and KID_KEY in k]


def _leaf_certificate_der(key: Dict[str, Any]) -> bytes:
    x5c = key.get(X5C_KEY)
    if not isinstance(x5c, list):
        raise InvalidJwtTokenError("No x5c field in the matching key")
    if not x5c or not isinstance(x5c[0], str):
        raise InvalidJwtTokenError("No certificate found in x5c field")
    try:
        return base64.b64decode(x5c[0], validate=True)
    except (binascii.Error, ValueError) as e:
        raise CertificateDecodeError(f"Failed to decode x5c certificate: {e}") from e


def load_verification_key(certificate_der: bytes) -> ec.EllipticCurvePublicKey:
    """
    Build a P-384 verification key from a DER certificate.

    The raw public point is taken from the certificate and re-imported on the
    curve ES384 requires.

    Raises:
        CertificateDecodeError: If the certificate cannot be parsed or does not
            carry a P-384 key
    """
    try:
        cert = x509.load_der_x509_certificate(certificate_der)
    except ValueError as e:
        raise CertificateDecodeError(f"Failed to parse certificate: {e}") from e

    public_key = cert.public_key()
    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        raise CertificateDecodeError(f"Unsupported public key type: {type(public_key).__name__}")
    if not isinstance(public_key.curve, ec.SECP384R1):
        raise CertificateDecodeError(f"Unsupported curve: {public_key.curve.name}")

    raw_point = public_key.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP384R1(), raw_point)


def _claims_from_payload(payload: Dict[str, Any]) -> AttestationClaims:
    if OVERALL_ATTESTATION_RESULT_CLAIM not in payload:
        raise ClaimsError(f"Token is missing the {OVERALL_ATTESTATION_RESULT_CLAIM} claim")
    result = payload[OVERALL_ATTESTATION_RESULT_CLAIM]
    if not isinstance(result, bool):
        raise ClaimsError(
            f"{OVERALL_ATTESTATION_RESULT_CLAIM} must be a boolean, got {type(result).__name__}"
        )
    additional = {k: v for k, v in payload.items() if k != OVERALL_ATTESTATION_RESULT_CLAIM}
    return AttestationClaims(overall_attestation_result=result, additional_claims=additional)


def decode_token(token: str, certificate_der: bytes) -> AttestationClaims:
    """
    Verify a token against a DER certificate and decode its claims.

    Raises:
        CertificateDecodeError: If the certificate is unusable
        SignatureVerificationError: If the signature does not verify
        InvalidJwtTokenError: If the token is malformed or otherwise invalid
        ClaimsError: If the overall result claim is missing or not a boolean
    """
    key = load_verification_key(certificate_der)
    try:
        payload = jwt.decode(
            token,
            key,
            algorithms=[TOKEN_ALGORITHM],
            options={"verify_aud": False},
        )
    except jwt.InvalidSignatureError as e:
        logger.error("Token signature verification failed: %s", e)
        raise SignatureVerificationError(f"Token signature verification failed: {e}") from e
    except jwt.PyJWTError as e:
        logger.error("Token validation failed: %s", e)
        raise InvalidJwtTokenError(f"Token validation failed: {e}") from e
    return _claims_from_payload(payload)


def verify_token_with_jwks(token: str, jwks: Any) -> AttestationClaims:
    """
    Verify a token against an already-fetched key set.

    Raises:
        InvalidJwtTokenError: If the header has no kid or no key matches it
        TokenVerificationError: For any certificate, signature or claims failure
    """
    try:
        header = jwt.get_unverified_header(token)
    except jwt.PyJWTError as e:
        raise InvalidJwtTokenError(f"Failed to decode token header: {e}") from e

    kid = header.get(KID_KEY)
    if not kid:
        raise InvalidJwtTokenError("Kid not found in token header")

    key = get_matching_key(jwks, kid)
    if key is None:
        logger.error("No key with kid %r in key set (available: %s)", kid, available_kids(jwks))
        raise InvalidJwtTokenError(f"Matching key not found in JWKS data for kid {kid!r}")

    return decode_token(token, _leaf_certificate_der(key))


class TokenVerifier:
    """Verifies result tokens against the key set published by the verifier"""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout

    def fetch_jwks(self, verifier_url: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        jwks_url = create_jwks_url(verifier_url)
        logger.debug("Fetching JWKS from %s", jwks_url)
        return get_json(jwks_url, timeout=self.timeout if timeout is None else timeout)

    def verify(
        self, verifier_url: str, token: str, timeout: Optional[float] = None
    ) -> AttestationClaims:
        """
        Verify `token` using the key set published next to `verifier_url`.

        Claims are returned only from a fully verified token. A `timeout` of
        None bounds the key set fetch with the verifier's own timeout.

        Raises:
            TransportError: If the key set cannot be fetched
            TokenVerificationError: If the token cannot be verified
        """
        jwks = self.fetch_jwks(verifier_url, timeout)
        return verify_token_with_jwks(token, jwks)
