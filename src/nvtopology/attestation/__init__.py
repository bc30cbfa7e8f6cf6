from .spdm import (
    parse_report,
    parse_neighbor_pdis,
    parse_attached_pdis,
    SpdmMeasurementResponse,
)
from .topology import verify_device_topology, verify_neighbor_topology
from .evidence import EvidenceSource, evidence_session, collect_evidence
from .nras_token import TokenVerifier, extract_result_token, create_jwks_url
from .remote import AttestationClient, AsyncAttestationClient
from .types import (
    Arch,
    AttestationClaims,
    AttestationError,
    CollectedEvidence,
    DeviceEvidence,
    NvSwitchEvidence,
    RemoteAttestationOptions,
    ReportParseError,
    TopologyError,
    TopologyMismatchError,
    UnrecognizedPdiError,
    DuplicatePdiError,
    TransportError,
    TokenVerificationError,
)

__all__ = [
    'parse_report',
    'parse_neighbor_pdis',
    'parse_attached_pdis',
    'SpdmMeasurementResponse',
    'verify_device_topology',
    'verify_neighbor_topology',
    'EvidenceSource',
    'evidence_session',
    'collect_evidence',
    'TokenVerifier',
    'extract_result_token',
    'create_jwks_url',
    'AttestationClient',
    'AsyncAttestationClient',
    'Arch',
    'AttestationClaims',
    'AttestationError',
    'CollectedEvidence',
    'DeviceEvidence',
    'NvSwitchEvidence',
    'RemoteAttestationOptions',
    'ReportParseError',
    'TopologyError',
    'TopologyMismatchError',
    'UnrecognizedPdiError',
    'DuplicatePdiError',
    'TransportError',
    'TokenVerificationError',
]
