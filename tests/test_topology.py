"""
Tests for GPU and NVSwitch topology checks.

A mismatch here means the reports disagree about the physical wiring, so every
failure must raise before anything is submitted remotely.
"""

import logging

import pytest

from nvtopology.attestation.topology import (
    verify_device_topology,
    verify_neighbor_topology,
)
from nvtopology.attestation.types import (
    DISABLED_PDI,
    DuplicatePdiError,
    InvalidPdiCountError,
    InvalidReportCountError,
    InvalidReportLengthError,
    PdiNotFoundError,
    TopologyError,
    TopologyMismatchError,
    UnrecognizedPdiError,
    format_pdi_set,
)

from helpers import (
    GPUS,
    SWITCH_A,
    SWITCH_B,
    SWITCH_C,
    SWITCH_D,
    SWITCH_E,
    SWITCHES,
    build_gpu_report,
    build_opaque_field,
    build_report,
    build_switch_report,
    healthy_gpu_reports,
    healthy_switch_reports,
    pdi,
)


class TestDeviceTopology:
    """Tests for verify_device_topology()."""

    def test_consistent_reports(self):
        result = verify_device_topology(healthy_gpu_reports())
        assert result == frozenset({SWITCH_A, SWITCH_B, SWITCH_C, SWITCH_D})

    def test_order_and_duplicates_do_not_matter(self):
        reports = healthy_gpu_reports()
        reports[5] = build_gpu_report([SWITCH_D, SWITCH_C, SWITCH_B, SWITCH_A, SWITCH_A])
        assert verify_device_topology(reports) == frozenset(SWITCHES)

    def test_mismatch_cites_both_sets(self):
        reports = healthy_gpu_reports()
        reports[3] = build_gpu_report([SWITCH_A, SWITCH_B, SWITCH_C, SWITCH_E, DISABLED_PDI])

        with pytest.raises(TopologyMismatchError) as exc_info:
            verify_device_topology(reports)

        err = exc_info.value
        assert err.expected == frozenset({SWITCH_A, SWITCH_B, SWITCH_C, SWITCH_D})
        assert err.actual == frozenset({SWITCH_A, SWITCH_B, SWITCH_C, SWITCH_E})
        assert SWITCH_D.hex() in str(err)
        assert SWITCH_E.hex() in str(err)

    @pytest.mark.parametrize("count", [0, 1, 7, 9, 16])
    def test_wrong_report_count(self, count):
        reports = [build_gpu_report(SWITCHES) for _ in range(count)]
        with pytest.raises(InvalidReportCountError) as exc_info:
            verify_device_topology(reports)
        assert exc_info.value.expected == 8
        assert exc_info.value.actual == count

    def test_too_few_enabled_switches(self):
        reports = healthy_gpu_reports()
        reports[0] = build_gpu_report([SWITCH_A, SWITCH_B, SWITCH_C, DISABLED_PDI, DISABLED_PDI])
        with pytest.raises(InvalidPdiCountError) as exc_info:
            verify_device_topology(reports)
        assert exc_info.value.expected == 4
        assert exc_info.value.actual == 3

    def test_too_many_enabled_switches(self):
        reports = healthy_gpu_reports()
        reports[2] = build_gpu_report(SWITCHES + [SWITCH_E])
        with pytest.raises(InvalidPdiCountError):
            verify_device_topology(reports)

    def test_parse_error_propagates(self):
        reports = healthy_gpu_reports()
        reports[6] = b"\x00" * 12
        with pytest.raises(InvalidReportLengthError):
            verify_device_topology(reports)

    def test_parse_errors_are_not_topology_errors(self):
        reports = healthy_gpu_reports()
        reports[1] = build_report(build_opaque_field(99, b""))
        with pytest.raises(PdiNotFoundError) as exc_info:
            verify_device_topology(reports)
        assert not isinstance(exc_info.value, TopologyError)

    def test_custom_counts(self):
        reports = [build_gpu_report([SWITCH_A, SWITCH_B]) for _ in range(2)]
        result = verify_device_topology(reports, expected_reports=2, expected_switches=2)
        assert result == frozenset({SWITCH_A, SWITCH_B})

    @pytest.mark.parametrize("expected_reports", [0, -1])
    def test_rejects_non_positive_report_count(self, expected_reports):
        with pytest.raises(ValueError, match="at least 1"):
            verify_device_topology([], expected_reports=expected_reports)

    def test_logs_on_mismatch(self, caplog):
        reports = healthy_gpu_reports()
        reports[7] = build_gpu_report([SWITCH_A, SWITCH_B, SWITCH_C, SWITCH_E])
        with caplog.at_level(logging.ERROR, logger="nvtopology.attestation.topology"):
            with pytest.raises(TopologyMismatchError):
                verify_device_topology(reports)
        assert "report 7" in caplog.text


class TestNeighborTopology:
    """Tests for verify_neighbor_topology()."""

    def test_consistent_reports(self):
        result = verify_neighbor_topology(healthy_switch_reports(), 8, frozenset(SWITCHES))
        assert result == frozenset(GPUS)

    def test_unrecognized_switch(self):
        reports = healthy_switch_reports()
        reports[2] = build_switch_report(SWITCH_E, GPUS)
        with pytest.raises(UnrecognizedPdiError) as exc_info:
            verify_neighbor_topology(reports, 8, frozenset(SWITCHES))
        assert exc_info.value.pdi == SWITCH_E
        assert exc_info.value.accepted == frozenset(SWITCHES)

    def test_attached_count_mismatch(self):
        reports = [build_switch_report(s, GPUS[:7]) for s in SWITCHES]
        with pytest.raises(InvalidPdiCountError) as exc_info:
            verify_neighbor_topology(reports, 8, frozenset(SWITCHES))
        assert exc_info.value.expected == 8
        assert exc_info.value.actual == 7

    def test_duplicate_gpu_pdis_count_once(self):
        reports = [build_switch_report(s, GPUS[:7] + [GPUS[0]]) for s in SWITCHES]
        with pytest.raises(InvalidPdiCountError):
            verify_neighbor_topology(reports, 8, frozenset(SWITCHES))

    def test_attached_set_mismatch(self):
        reports = healthy_switch_reports()
        rewired = GPUS[:7] + [pdi(99)]
        reports[3] = build_switch_report(SWITCH_D, rewired)
        with pytest.raises(TopologyMismatchError) as exc_info:
            verify_neighbor_topology(reports, 8, frozenset(SWITCHES))
        assert exc_info.value.expected == frozenset(GPUS)
        assert exc_info.value.actual == frozenset(rewired)

    @pytest.mark.parametrize("count", [0, 3, 5])
    def test_wrong_report_count(self, count):
        reports = [build_switch_report(SWITCH_A, GPUS) for _ in range(count)]
        with pytest.raises(InvalidReportCountError):
            verify_neighbor_topology(reports, 8, frozenset(SWITCHES))

    def test_repeated_switch_pdi_allowed_by_default(self):
        reports = [build_switch_report(SWITCH_A, GPUS) for _ in range(4)]
        assert verify_neighbor_topology(reports, 8, frozenset(SWITCHES)) == frozenset(GPUS)

    def test_repeated_switch_pdi_rejected_when_distinct_required(self):
        reports = healthy_switch_reports()
        reports[2] = build_switch_report(SWITCH_A, GPUS)
        with pytest.raises(DuplicatePdiError) as exc_info:
            verify_neighbor_topology(reports, 8, frozenset(SWITCHES), require_distinct_switches=True)
        assert exc_info.value.pdi == SWITCH_A

    def test_distinct_switches_pass_when_required(self):
        result = verify_neighbor_topology(
            healthy_switch_reports(), 8, frozenset(SWITCHES), require_distinct_switches=True
        )
        assert result == frozenset(GPUS)

    def test_rejects_non_positive_report_count(self):
        with pytest.raises(ValueError, match="at least 1"):
            verify_neighbor_topology([], 8, frozenset(SWITCHES), expected_reports=0)

    def test_accepts_plain_set(self):
        result = verify_neighbor_topology(healthy_switch_reports(), 8, set(SWITCHES))
        assert result == frozenset(GPUS)

    def test_end_to_end_with_device_result(self):
        accepted = verify_device_topology(healthy_gpu_reports())
        assert verify_neighbor_topology(healthy_switch_reports(), 8, accepted) == frozenset(GPUS)


def test_format_pdi_set_is_sorted():
    assert format_pdi_set([SWITCH_B, SWITCH_A]) == "{" + f"{SWITCH_A.hex()}, {SWITCH_B.hex()}" + "}"
