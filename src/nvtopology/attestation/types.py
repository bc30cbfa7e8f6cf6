"""
Shared types, errors, and protocol constants for topology attestation.

This module is the canonical source for types used across the SPDM parser,
the topology checks and the remote verifier client. It has no intra-package
dependencies, so any module can import from it without risk of circular
imports.
"""

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional


# =============================================================================
# Protocol-level constants
# =============================================================================

PDI_SIZE = 8           # Platform Data Information (bytes)
NONCE_SIZE = 32        # SPDM nonce (bytes)

# All-zero PDI marks a disabled or unpopulated link
DISABLED_PDI = b"\x00" * PDI_SIZE

# Remote verifier (NRAS) endpoints
REMOTE_GPU_VERIFIER_SERVICE_URL = "https://nras.attestation.nvidia.com/v3/attest/gpu"
REMOTE_NVSWITCH_VERIFIER_SERVICE_URL = "https://nras.attestation.nvidia.com/v3/attest/switch"
JWKS_PATH = "/.well-known/jwks.json"

NVIDIA_OCSP_ALLOW_CERT_HOLD_HEADER = "X-NVIDIA-OCSP-ALLOW-CERT-HOLD"
NV_ALLOW_HOLD_CERT_ENV = "NV_ALLOW_HOLD_CERT"

DEFAULT_CLAIMS_VERSION = "2.0"
DEFAULT_TIMEOUT = 30.0  # seconds

# Request payload keys
NONCE_KEY = "nonce"
EVIDENCE_LIST_KEY = "evidence_list"
CLAIMS_VERSION_KEY = "claims_version"
ARCH_KEY = "arch"

# JWKS keys
KEYS_KEY = "keys"
KID_KEY = "kid"
X5C_KEY = "x5c"

OVERALL_ATTESTATION_RESULT_CLAIM = "x-nvidia-overall-att-result"
TOKEN_ALGORITHM = "ES384"


class Arch(str, Enum):
    """Device architectures understood by the remote verifier"""
    HOPPER = "HOPPER"
    LS10 = "LS10"


DEFAULT_VERIFIER_URLS = {
    Arch.HOPPER: REMOTE_GPU_VERIFIER_SERVICE_URL,
    Arch.LS10: REMOTE_NVSWITCH_VERIFIER_SERVICE_URL,
}


def format_pdi_set(pdis: Iterable[bytes]) -> str:
    """Render a PDI collection as sorted hex, for logs and error messages"""
    return "{" + ", ".join(sorted(p.hex() for p in pdis)) + "}"


# =============================================================================
# Errors
# =============================================================================

class AttestationError(Exception):
    """Base class for attestation errors"""
    pass


# --- Malformed evidence ---

class ReportParseError(AttestationError):
    """Raised when an attestation report cannot be decoded"""
    pass

class InvalidReportLengthError(ReportParseError):
    """Raised when a report is shorter than the fixed SPDM header"""
    pass

class InvalidSpdmMeasurementLengthError(ReportParseError):
    """Raised when a computed offset runs past the end of the report"""
    pass

class InvalidOpaqueDataTypeError(ReportParseError):
    """Raised when a TLV type field cannot be read"""
    pass

class InvalidOpaqueDataSizeError(ReportParseError):
    """Raised when a TLV length field cannot be read or overruns the block"""
    pass

class InvalidPdiLengthError(ReportParseError):
    """Raised when a PDI payload is not a whole number of PDIs"""
    pass

class PdiNotFoundError(ReportParseError):
    """Raised when an expected opaque field is absent"""
    pass


# --- Topology ---

class TopologyError(AttestationError):
    """Raised when reports do not describe one consistent physical mesh"""
    pass

class InvalidReportCountError(TopologyError):
    """Raised when the number of reports differs from the expected count"""

    def __init__(self, message: str, expected: int, actual: int):
        super().__init__(f"{message}: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual

class InvalidPdiCountError(TopologyError):
    """Raised when a PDI set has the wrong number of enabled entries"""

    def __init__(self, message: str, expected: int, actual: int):
        super().__init__(f"{message}: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual

class TopologyMismatchError(TopologyError):
    """Raised when a report's PDI set diverges from the accepted set"""

    def __init__(self, message: str, expected: FrozenSet[bytes], actual: FrozenSet[bytes]):
        super().__init__(
            f"{message}: expected {format_pdi_set(expected)}, got {format_pdi_set(actual)}"
        )
        self.expected = expected
        self.actual = actual

class UnrecognizedPdiError(TopologyError):
    """Raised when a switch reports an identity outside the accepted set"""

    def __init__(self, pdi: bytes, accepted: FrozenSet[bytes]):
        super().__init__(
            f"Switch PDI {pdi.hex()} is not in the accepted set {format_pdi_set(accepted)}"
        )
        self.pdi = pdi
        self.accepted = accepted

class DuplicatePdiError(TopologyError):
    """Raised when two switch reports claim the same switch identity"""

    def __init__(self, pdi: bytes):
        super().__init__(f"Switch PDI {pdi.hex()} is reported by more than one switch")
        self.pdi = pdi


# --- Evidence source ---

class EvidenceUnavailableError(AttestationError):
    """Raised by evidence sources when a report or certificate cannot be read"""
    pass


# --- Transport ---

class TransportError(AttestationError):
    """Raised when a verifier round-trip fails"""
    pass

class RequestError(TransportError):
    """Raised when a request cannot be sent or times out"""
    pass

class ResponseError(TransportError):
    """Raised when the verifier answers with a non-success status"""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"Verifier returned HTTP {status_code}: {body}")
        self.status_code = status_code
        self.body = body

class ParseResponseError(TransportError):
    """Raised when a verifier response is not valid JSON"""
    pass


# --- Token verification ---

class TokenVerificationError(AttestationError):
    """Raised when the signed result token cannot be trusted"""
    pass

class InvalidJwtTokenError(TokenVerificationError):
    """Raised when the token or its key lookup is malformed"""
    pass

class CertificateDecodeError(TokenVerificationError):
    """Raised when the signing certificate cannot be decoded"""
    pass

class SignatureVerificationError(TokenVerificationError):
    """Raised when the token signature does not verify"""
    pass

class ClaimsError(TokenVerificationError):
    """Raised when verified claims do not match the expected schema"""
    pass


# =============================================================================
# Data types
# =============================================================================

@dataclass
class DeviceEvidence:
    """Evidence submitted for one device, both fields base64 encoded"""
    certificate: str
    evidence: str

    def to_dict(self) -> Dict[str, str]:
        return {"certificate": self.certificate, "evidence": self.evidence}

@dataclass
class NvSwitchEvidence(DeviceEvidence):
    """Evidence for one NVSwitch, labelled with the switch UUID"""
    uuid: str = ""

@dataclass
class CollectedEvidence:
    """Raw report and certificate chain read from one device"""
    device_id: str
    report: bytes
    certificate_chain: bytes

    def to_device_evidence(self) -> DeviceEvidence:
        return DeviceEvidence(
            certificate=base64.b64encode(self.certificate_chain).decode(),
            evidence=base64.b64encode(self.report).decode(),
        )

    def to_nvswitch_evidence(self) -> NvSwitchEvidence:
        return NvSwitchEvidence(
            certificate=base64.b64encode(self.certificate_chain).decode(),
            evidence=base64.b64encode(self.report).decode(),
            uuid=self.device_id,
        )

@dataclass
class AttestationClaims:
    """Claims decoded from a verified result token"""
    overall_attestation_result: bool
    additional_claims: Dict[str, Any] = field(default_factory=dict)

@dataclass
class RemoteAttestationOptions:
    """Per-request settings for the remote verifier.

    A ``verifier_url`` of None selects the default endpoint for the
    architecture being submitted.
    """
    verifier_url: Optional[str] = None
    allow_hold_cert: bool = False
    claims_version: str = DEFAULT_CLAIMS_VERSION
    service_key: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT

    def resolve_url(self, arch: Arch) -> str:
        return self.verifier_url or DEFAULT_VERIFIER_URLS[arch]
