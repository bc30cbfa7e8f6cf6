import logging
import os
import secrets
from dataclasses import dataclass
from typing import Any, Callable, FrozenSet, Optional, Sequence

from .attestation.evidence import EvidenceSource, collect_evidence, evidence_session
from .attestation.remote import AttestationClient
from .attestation.topology import (
    NUMBER_OF_GPU_TOPOLOGY_CHECK_REPORTS,
    verify_device_topology,
    verify_neighbor_topology,
)
from .attestation.types import (
    NONCE_SIZE,
    NV_ALLOW_HOLD_CERT_ENV,
    Arch,
    CollectedEvidence,
    RemoteAttestationOptions,
)

logger = logging.getLogger(__name__)

NRAS_SERVICE_KEY_ENV = "NRAS_SERVICE_KEY"


@dataclass
class RoundResult:
    """Outcome of one verification round"""
    passed: bool
    gpu_passed: bool
    switch_passed: bool
    switch_pdis: FrozenSet[bytes]
    gpu_pdis: FrozenSet[bytes]
    gpu_response: Any
    switch_response: Any


def options_from_env() -> RemoteAttestationOptions:
    """
    Build remote options from the process environment.

    NV_ALLOW_HOLD_CERT=true allows certificates on hold; NRAS_SERVICE_KEY, if
    set, is sent as the Authorization header.
    """
    return RemoteAttestationOptions(
        allow_hold_cert=os.getenv(NV_ALLOW_HOLD_CERT_ENV, "") == "true",
        service_key=os.getenv(NRAS_SERVICE_KEY_ENV) or None,
    )


def run_round(
    gpu_evidence: Sequence[CollectedEvidence],
    switch_evidence: Sequence[CollectedEvidence],
    nonce: bytes,
    num_gpus: int = NUMBER_OF_GPU_TOPOLOGY_CHECK_REPORTS,
    gpu_client: Optional[AttestationClient] = None,
    switch_client: Optional[AttestationClient] = None,
) -> RoundResult:
    """
    Run the local topology gate, then the remote round.

    Any topology or parse failure raises before a request is sent. Both
    remote verdicts must be positive for the round to pass.

    Args:
        gpu_evidence: One entry per GPU, collected with `nonce`
        switch_evidence: One entry per NVSwitch, collected with `nonce`
        nonce: 32-byte nonce bound into all reports
        num_gpus: Number of GPUs in the mesh
        gpu_client: Client for GPU evidence (HOPPER)
        switch_client: Client for switch evidence (LS10)

    Returns:
        RoundResult

    Raises:
        ReportParseError, TopologyError: Local evidence is malformed or inconsistent
        TransportError, TokenVerificationError: The remote round failed
    """
    gpu_client = gpu_client or AttestationClient(Arch.HOPPER)
    switch_client = switch_client or AttestationClient(Arch.LS10)

    switch_pdis = verify_device_topology(
        [e.report for e in gpu_evidence], expected_reports=num_gpus
    )
    gpu_pdis = verify_neighbor_topology(
        [e.report for e in switch_evidence], num_gpus, switch_pdis
    )
    logger.info("Local topology gate passed; submitting evidence")

    gpu_passed, gpu_response = gpu_client.submit(
        [e.to_device_evidence() for e in gpu_evidence], nonce
    )
    switch_passed, switch_response = switch_client.submit(
        [e.to_nvswitch_evidence() for e in switch_evidence], nonce
    )

    passed = gpu_passed and switch_passed
    if passed:
        logger.info("Verification round passed")
    else:
        logger.warning(
            "Verification round failed: gpu=%s, switch=%s", gpu_passed, switch_passed
        )
    return RoundResult(
        passed=passed,
        gpu_passed=gpu_passed,
        switch_passed=switch_passed,
        switch_pdis=switch_pdis,
        gpu_pdis=gpu_pdis,
        gpu_response=gpu_response,
        switch_response=switch_response,
    )


class TopologyAttestationClient:
    """Attests a GPU/NVSwitch mesh end to end"""

    def __init__(
        self,
        gpu_source_factory: Callable[[], EvidenceSource],
        switch_source_factory: Callable[[], EvidenceSource],
        num_gpus: int = NUMBER_OF_GPU_TOPOLOGY_CHECK_REPORTS,
        gpu_options: Optional[RemoteAttestationOptions] = None,
        switch_options: Optional[RemoteAttestationOptions] = None,
    ):
        self.gpu_source_factory = gpu_source_factory
        self.switch_source_factory = switch_source_factory
        self.num_gpus = num_gpus
        self.gpu_client = AttestationClient(Arch.HOPPER, gpu_options)
        self.switch_client = AttestationClient(Arch.LS10, switch_options)
        self._last_result: Optional[RoundResult] = None

    @property
    def last_result(self) -> Optional[RoundResult]:
        """Returns the result of the last completed round"""
        return self._last_result

    def attest(self, nonce: Optional[bytes] = None) -> RoundResult:
        """
        Collect fresh evidence and run one verification round.

        A new random nonce is generated unless one is supplied; never pass the
        same nonce twice.
        """
        if nonce is None:
            nonce = secrets.token_bytes(NONCE_SIZE)

        with evidence_session(self.gpu_source_factory) as source:
            gpu_evidence = collect_evidence(source, nonce)
        with evidence_session(self.switch_source_factory) as source:
            switch_evidence = collect_evidence(source, nonce)

        result = run_round(
            gpu_evidence,
            switch_evidence,
            nonce,
            num_gpus=self.num_gpus,
            gpu_client=self.gpu_client,
            switch_client=self.switch_client,
        )
        self._last_result = result
        return result
