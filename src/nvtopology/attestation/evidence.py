"""
Evidence sources and collection.

Reading reports off hardware (NVML for GPUs, NSCQ for NVSwitches) happens
behind the EvidenceSource protocol. Sources are opened through
evidence_session(), which closes them on every exit path.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional, Protocol

from .types import NONCE_SIZE, CollectedEvidence

logger = logging.getLogger(__name__)


class EvidenceSource(Protocol):
    """Synchronous access to device evidence.

    Implementations raise EvidenceUnavailableError when a device cannot
    produce a report or certificate chain. Thread-safety for concurrent use is
    up to the implementation.
    """

    def list_devices(self) -> List[str]:
        ...

    def fetch(self, device_id: str, nonce: bytes) -> bytes:
        """Return the raw attestation report for `device_id` bound to `nonce`"""
        ...

    def fetch_certificate_chain(self, device_id: str) -> bytes:
        """Return the DER certificate chain for `device_id`"""
        ...

    def close(self) -> None:
        ...


@contextmanager
def evidence_session(factory: Callable[[], EvidenceSource]) -> Iterator[EvidenceSource]:
    """
    Open an evidence source and guarantee it is closed.

    Args:
        factory: Callable that opens and returns a source

    Yields:
        The opened source
    """
    source = factory()
    try:
        yield source
    finally:
        source.close()


def collect_evidence(
    source: EvidenceSource,
    nonce: bytes,
    device_ids: Optional[List[str]] = None,
) -> List[CollectedEvidence]:
    """
    Read one report and certificate chain per device.

    Args:
        source: Open evidence source
        nonce: 32-byte nonce bound into every report
        device_ids: Devices to read; defaults to source.list_devices()

    Returns:
        Evidence in device order

    Raises:
        ValueError: If the nonce is not 32 bytes
        EvidenceUnavailableError: If the source cannot read a device
    """
    if len(nonce) != NONCE_SIZE:
        raise ValueError(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")

    if device_ids is None:
        device_ids = source.list_devices()

    collected = []
    for device_id in device_ids:
        report = source.fetch(device_id, nonce)
        certificate_chain = source.fetch_certificate_chain(device_id)
        logger.debug(
            "Collected evidence for %s: report %d bytes, chain %d bytes",
            device_id, len(report), len(certificate_chain),
        )
        collected.append(CollectedEvidence(
            device_id=device_id,
            report=report,
            certificate_chain=certificate_chain,
        ))
    return collected
