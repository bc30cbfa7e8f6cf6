"""
Topology checks across GPU and NVSwitch attestation reports.

A single report only vouches for itself. These checks require every GPU to
name the same set of switches, and every switch to name the same set of GPUs,
so that a swapped or rewired component shows up as a set mismatch before any
evidence is sent to the remote verifier.
"""

import logging
from typing import FrozenSet, Optional, Sequence, Set

from .spdm import (
    OPAQUE_FIELD_ID_DEVICE_PDI,
    OPAQUE_FIELD_ID_SWITCH_GPU_PDIS,
    OPAQUE_FIELD_ID_SWITCH_PDI,
    parse_attached_pdis,
    parse_neighbor_pdis,
)
from .types import (
    DISABLED_PDI,
    DuplicatePdiError,
    InvalidPdiCountError,
    InvalidReportCountError,
    ReportParseError,
    TopologyMismatchError,
    UnrecognizedPdiError,
    format_pdi_set,
)

logger = logging.getLogger(__name__)

NUMBER_OF_GPU_TOPOLOGY_CHECK_REPORTS = 8
NUMBER_OF_SWITCH_PDIS = 4
NUMBER_OF_SWITCH_ATTESTATION_REPORTS = 4


def _check_expected_reports(expected_reports: int) -> None:
    if expected_reports < 1:
        raise ValueError(f"expected_reports must be at least 1, got {expected_reports}")


def verify_device_topology(
    reports: Sequence[bytes],
    expected_reports: int = NUMBER_OF_GPU_TOPOLOGY_CHECK_REPORTS,
    expected_switches: int = NUMBER_OF_SWITCH_PDIS,
    field_type: int = OPAQUE_FIELD_ID_SWITCH_PDI,
) -> FrozenSet[bytes]:
    """
    Check that every GPU report names the same set of switches.

    For each report the switch PDI list is parsed, disabled (all-zero) entries
    are dropped, and the remaining set must hold exactly `expected_switches`
    PDIs. The first report's set becomes the accepted set; every later report
    must match it exactly.

    Args:
        reports: Raw GPU attestation reports
        expected_reports: Number of reports required
        expected_switches: Number of enabled switch PDIs each report must name
        field_type: Opaque field identifier carrying the switch PDI list

    Returns:
        The common set of switch PDIs

    Raises:
        InvalidReportCountError: If len(reports) != expected_reports
        ReportParseError: If any report cannot be decoded
        InvalidPdiCountError: If a report names the wrong number of switches
        TopologyMismatchError: If a report's set differs from the accepted set
        ValueError: If expected_reports is less than 1
    """
    _check_expected_reports(expected_reports)
    if len(reports) != expected_reports:
        logger.error(
            "Invalid number of GPU attestation reports: expected %d, got %d",
            expected_reports, len(reports),
        )
        raise InvalidReportCountError(
            "Invalid number of GPU attestation reports", expected_reports, len(reports)
        )

    accepted: Optional[FrozenSet[bytes]] = None
    for index, report in enumerate(reports):
        try:
            pdis = parse_neighbor_pdis(report, field_type=field_type)
        except ReportParseError as e:
            logger.error("Failed to extract switch PDIs from GPU report %d: %s", index, e)
            raise

        switch_pdis = frozenset(pdis) - {DISABLED_PDI}
        if len(switch_pdis) != expected_switches:
            logger.error(
                "GPU report %d names %d switches, expected %d",
                index, len(switch_pdis), expected_switches,
            )
            raise InvalidPdiCountError(
                f"Invalid number of switch PDIs in GPU report {index}",
                expected_switches, len(switch_pdis),
            )

        if accepted is None:
            logger.info("GPU topology check: accepted switch set %s", format_pdi_set(switch_pdis))
            accepted = switch_pdis
        elif switch_pdis != accepted:
            logger.error(
                "GPU topology mismatch in report %d: expected %s, got %s",
                index, format_pdi_set(accepted), format_pdi_set(switch_pdis),
            )
            raise TopologyMismatchError(
                f"Switch PDI set in GPU report {index} does not match", accepted, switch_pdis
            )

    logger.info("GPU topology check passed")
    return accepted


def verify_neighbor_topology(
    reports: Sequence[bytes],
    expected_attachment_count: int,
    accepted_set: FrozenSet[bytes],
    expected_reports: int = NUMBER_OF_SWITCH_ATTESTATION_REPORTS,
    device_pdi_type: int = OPAQUE_FIELD_ID_DEVICE_PDI,
    attached_pdis_type: int = OPAQUE_FIELD_ID_SWITCH_GPU_PDIS,
    require_distinct_switches: bool = False,
) -> FrozenSet[bytes]:
    """
    Check that every switch is known and names the same set of GPUs.

    Each switch's own PDI is only checked for membership in accepted_set, so
    by default several reports may claim the same switch. Pass
    require_distinct_switches=True to reject that.

    Args:
        reports: Raw NVSwitch attestation reports
        expected_attachment_count: Number of distinct GPU PDIs each switch must name
        accepted_set: Switch PDIs accepted by verify_device_topology()
        expected_reports: Number of reports required
        device_pdi_type: Opaque field identifier for the switch's own PDI
        attached_pdis_type: Opaque field identifier for the attached GPU PDIs
        require_distinct_switches: Reject reports that repeat a switch PDI

    Returns:
        The common set of attached GPU PDIs

    Raises:
        InvalidReportCountError: If len(reports) != expected_reports
        ReportParseError: If any report cannot be decoded
        UnrecognizedPdiError: If a switch's own PDI is not in accepted_set
        DuplicatePdiError: If require_distinct_switches is set and a switch
            PDI appears in more than one report
        InvalidPdiCountError: If a switch names the wrong number of GPUs
        TopologyMismatchError: If a switch's GPU set differs from the first one
        ValueError: If expected_reports is less than 1
    """
    _check_expected_reports(expected_reports)
    if len(reports) != expected_reports:
        logger.error(
            "Invalid number of switch attestation reports: expected %d, got %d",
            expected_reports, len(reports),
        )
        raise InvalidReportCountError(
            "Invalid number of switch attestation reports", expected_reports, len(reports)
        )

    accepted_set = frozenset(accepted_set)
    common: Optional[FrozenSet[bytes]] = None
    seen_switches: Set[bytes] = set()
    for index, report in enumerate(reports):
        try:
            attached, own_pdi = parse_attached_pdis(
                report,
                device_pdi_type=device_pdi_type,
                attached_pdis_type=attached_pdis_type,
            )
        except ReportParseError as e:
            logger.error("Failed to extract PDIs from switch report %d: %s", index, e)
            raise

        if own_pdi not in accepted_set:
            logger.error(
                "Switch report %d: PDI %s is not in the accepted set %s",
                index, own_pdi.hex(), format_pdi_set(accepted_set),
            )
            raise UnrecognizedPdiError(own_pdi, accepted_set)

        if require_distinct_switches and own_pdi in seen_switches:
            logger.error("Switch report %d: PDI %s already reported", index, own_pdi.hex())
            raise DuplicatePdiError(own_pdi)
        seen_switches.add(own_pdi)

        gpu_pdis = frozenset(attached)
        if len(gpu_pdis) != expected_attachment_count:
            logger.error(
                "Switch report %d names %d GPUs, expected %d",
                index, len(gpu_pdis), expected_attachment_count,
            )
            raise InvalidPdiCountError(
                f"Invalid number of GPU PDIs in switch report {index}",
                expected_attachment_count, len(gpu_pdis),
            )

        if common is None:
            logger.info("Switch topology check: accepted GPU set %s", format_pdi_set(gpu_pdis))
            common = gpu_pdis
        elif gpu_pdis != common:
            logger.error(
                "Switch topology mismatch in report %d: expected %s, got %s",
                index, format_pdi_set(common), format_pdi_set(gpu_pdis),
            )
            raise TopologyMismatchError(
                f"GPU PDI set in switch report {index} does not match", common, gpu_pdis
            )

    logger.info("Switch topology check passed")
    return common
