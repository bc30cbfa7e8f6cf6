from .client import TopologyAttestationClient, RoundResult, run_round, options_from_env
from .attestation import (
    AttestationClient,
    AsyncAttestationClient,
    TokenVerifier,
    RemoteAttestationOptions,
    Arch,
    AttestationError,
    verify_device_topology,
    verify_neighbor_topology,
    parse_neighbor_pdis,
    parse_attached_pdis,
)

__all__ = [
    "TopologyAttestationClient",
    "RoundResult",
    "run_round",
    "options_from_env",
    "AttestationClient",
    "AsyncAttestationClient",
    "TokenVerifier",
    "RemoteAttestationOptions",
    "Arch",
    "AttestationError",
    "verify_device_topology",
    "verify_neighbor_topology",
    "parse_neighbor_pdis",
    "parse_attached_pdis",
]
