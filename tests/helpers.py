"""
Synthetic evidence and token builders shared by the test modules.
"""

import base64
import datetime
import functools
import struct

import jwt
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from jwt.utils import base64url_decode, base64url_encode

from nvtopology.attestation.spdm import (
    OPAQUE_FIELD_ID_DEVICE_PDI,
    OPAQUE_FIELD_ID_SWITCH_GPU_PDIS,
    OPAQUE_FIELD_ID_SWITCH_PDI,
    SPDM_REQUEST_SIZE,
)
from nvtopology.attestation.types import DISABLED_PDI


# =============================================================================
# SPDM reports
# =============================================================================

def pdi(n: int) -> bytes:
    """Distinct, non-zero 8-byte PDI"""
    return (0x10DE000000000000 + n).to_bytes(8, "big")


SWITCH_A, SWITCH_B, SWITCH_C, SWITCH_D, SWITCH_E = (pdi(0xA0 + i) for i in range(5))
SWITCHES = [SWITCH_A, SWITCH_B, SWITCH_C, SWITCH_D]
GPUS = [pdi(i) for i in range(1, 9)]


def build_opaque_field(field_type: int, value: bytes) -> bytes:
    return struct.pack("<HH", field_type, len(value)) + value


def build_report(
    opaque_data: bytes = b"",
    measurement_record: bytes = b"\x11" * 16,
    nonce: bytes = b"\x22" * 32,
    signature: bytes = b"\x33" * 96,
    request: bytes = b"\x10" * SPDM_REQUEST_SIZE,
    version: int = 0x11,
    response_code: int = 0x60,
    param1: int = 0,
    param2: int = 0,
    number_of_blocks: int = 1,
) -> bytes:
    """Build a GET_MEASUREMENTS request followed by a MEASUREMENTS response"""
    response = struct.pack("<BBBBB", version, response_code, param1, param2, number_of_blocks)
    response += struct.pack("<I", len(measurement_record))[:3]
    response += measurement_record
    response += nonce
    response += struct.pack("<H", len(opaque_data))
    response += opaque_data
    response += signature
    return request + response


def build_gpu_report(switch_pdis) -> bytes:
    opaque = build_opaque_field(0x01, b"\x00" * 4)
    opaque += build_opaque_field(OPAQUE_FIELD_ID_SWITCH_PDI, b"".join(switch_pdis))
    return build_report(opaque)


def build_switch_report(own_pdi: bytes, gpu_pdis) -> bytes:
    opaque = build_opaque_field(0x02, b"driver")
    opaque += build_opaque_field(OPAQUE_FIELD_ID_DEVICE_PDI, own_pdi)
    opaque += build_opaque_field(OPAQUE_FIELD_ID_SWITCH_GPU_PDIS, b"".join(gpu_pdis))
    return build_report(opaque)


def healthy_gpu_reports():
    return [build_gpu_report(SWITCHES + [DISABLED_PDI]) for _ in range(8)]


def healthy_switch_reports():
    return [build_switch_report(s, GPUS) for s in SWITCHES]


# =============================================================================
# Signed result tokens
# =============================================================================

@functools.lru_cache(maxsize=None)
def signing_material(curve_name: str = "secp384r1"):
    """Self-signed test certificate and key, cached per curve"""
    curve = ec.SECP384R1() if curve_name == "secp384r1" else ec.SECP256R1()
    key = ec.generate_private_key(curve)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "nras-test")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=10))
        .sign(key, hashes.SHA384())
    )
    return key, cert


def cert_b64(cert) -> str:
    return base64.b64encode(cert.public_bytes(serialization.Encoding.DER)).decode()


def make_jwks(cert, kid: str = "k1") -> dict:
    return {"keys": [{"kid": kid, "kty": "EC", "x5c": [cert_b64(cert)]}]}


def make_token(key, claims: dict, kid="k1", algorithm: str = "ES384") -> str:
    headers = {"kid": kid} if kid is not None else {}
    return jwt.encode(claims, key, algorithm=algorithm, headers=headers)


def flip_signature_byte(token: str, index: int = 10) -> str:
    header, payload, signature = token.split(".")
    raw = bytearray(base64url_decode(signature))
    raw[index] ^= 0x01
    return ".".join([header, payload, base64url_encode(bytes(raw)).decode()])


def nras_response(token: str) -> list:
    return [["JWT", token], {"GPU-0": "detail.token.here"}]
