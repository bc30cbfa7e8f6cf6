"""
SPDM attestation report parsing structures and constants.

This module decodes the attestation reports returned by GPUs and NVSwitches:
a GET_MEASUREMENTS request message followed by the MEASUREMENTS response,
whose opaque data block is a sequence of TLV fields. Two of those fields carry
Platform Data Information (PDI) identifiers used for topology checks.
"""

import struct
from dataclasses import dataclass
from typing import Iterator, List, Tuple

from .types import (
    NONCE_SIZE,
    PDI_SIZE,
    InvalidOpaqueDataSizeError,
    InvalidOpaqueDataTypeError,
    InvalidPdiLengthError,
    InvalidReportLengthError,
    InvalidSpdmMeasurementLengthError,
    PdiNotFoundError,
)

# =============================================================================
# Constants
# =============================================================================

# GET_MEASUREMENTS request that precedes the response in every report
SPDM_REQUEST_SIZE = 0x25  # 37 bytes

# MEASUREMENTS response field sizes
SPDM_VERSION_SIZE = 1
RESPONSE_CODE_SIZE = 1
PARAM1_SIZE = 1
PARAM2_SIZE = 1
NUMBER_OF_BLOCKS_SIZE = 1
MEASUREMENT_RECORD_LENGTH_SIZE = 3  # 24-bit little-endian
OPAQUE_LENGTH_SIZE = 2

# Fixed portion of the response, up to and including the record length
RESPONSE_FIXED_SIZE = 0x08  # 8 bytes
REPORT_MIN_SIZE = SPDM_REQUEST_SIZE + RESPONSE_FIXED_SIZE  # 45 bytes

# TLV header
OPAQUE_FIELD_TYPE_SIZE = 2
OPAQUE_FIELD_LENGTH_SIZE = 2

# Opaque field identifiers
OPAQUE_FIELD_ID_SWITCH_PDI = 22       # GPU report: PDIs of connected switches
OPAQUE_FIELD_ID_DEVICE_PDI = 22       # Switch report: the switch's own PDI
OPAQUE_FIELD_ID_SWITCH_GPU_PDIS = 26  # Switch report: PDIs of attached GPUs

# =============================================================================
# Response offsets (relative to response start)
# =============================================================================

RESPONSE_VERSION_OFFSET = 0x00
RESPONSE_CODE_OFFSET = 0x01
RESPONSE_PARAM1_OFFSET = 0x02
RESPONSE_PARAM2_OFFSET = 0x03
RESPONSE_NUMBER_OF_BLOCKS_OFFSET = 0x04
RESPONSE_RECORD_LENGTH_OFFSET = 0x05
RESPONSE_RECORD_OFFSET = 0x08


# =============================================================================
# Data structures
# =============================================================================

@dataclass
class OpaqueField:
    """One TLV entry from the opaque data block."""
    field_type: int
    value: bytes

    def __str__(self) -> str:
        return f"OpaqueField(type={self.field_type}, length={len(self.value)})"


@dataclass
class SpdmMeasurementResponse:
    """
    Decoded attestation report.

    The opaque data is kept as raw bytes; use iter_opaque_fields() or the
    PDI helpers to walk it.
    """
    request: bytes
    spdm_version: int
    response_code: int
    param1: int
    param2: int
    number_of_blocks: int
    measurement_record: bytes
    nonce: bytes
    opaque_data: bytes
    signature: bytes

    def opaque_fields(self) -> List[OpaqueField]:
        return list(iter_opaque_fields(self.opaque_data))

    def __str__(self) -> str:
        return (
            f"SpdmMeasurementResponse(version=0x{self.spdm_version:02x}, "
            f"response_code=0x{self.response_code:02x}, "
            f"blocks={self.number_of_blocks}, "
            f"record={len(self.measurement_record)} bytes, "
            f"nonce={self.nonce.hex()[:16]}..., "
            f"opaque={len(self.opaque_data)} bytes, "
            f"signature={len(self.signature)} bytes)"
        )


# =============================================================================
# Parsing
# =============================================================================

def _check_length(data: bytes, end: int, field_name: str) -> None:
    """
    Ensure `data` holds at least `end` bytes before a slice is taken.

    Raises:
        InvalidSpdmMeasurementLengthError: If the field runs past the buffer
    """
    if len(data) < end:
        raise InvalidSpdmMeasurementLengthError(
            f"{field_name} ends at offset {end}, but response is only {len(data)} bytes"
        )


def parse_report(data: bytes) -> SpdmMeasurementResponse:
    """
    Parse a raw attestation report.

    Args:
        data: Raw report bytes (request message followed by the response)

    Returns:
        Parsed SpdmMeasurementResponse

    Raises:
        InvalidReportLengthError: If the report is shorter than the fixed header
        InvalidSpdmMeasurementLengthError: If a variable-length field overruns the report
    """
    if len(data) < REPORT_MIN_SIZE:
        raise InvalidReportLengthError(
            f"Report too short: {len(data)} bytes, expected at least {REPORT_MIN_SIZE}"
        )

    request = data[:SPDM_REQUEST_SIZE]
    response = data[SPDM_REQUEST_SIZE:]

    # 24-bit length, padded to u32
    record_length = struct.unpack_from(
        "<I", response[RESPONSE_RECORD_LENGTH_OFFSET:RESPONSE_RECORD_OFFSET] + b"\x00"
    )[0]

    offset = RESPONSE_RECORD_OFFSET
    _check_length(response, offset + record_length, "Measurement record")
    measurement_record = response[offset:offset + record_length]
    offset += record_length

    _check_length(response, offset + NONCE_SIZE, "Nonce")
    nonce = response[offset:offset + NONCE_SIZE]
    offset += NONCE_SIZE

    _check_length(response, offset + OPAQUE_LENGTH_SIZE, "Opaque data length")
    opaque_length = struct.unpack_from("<H", response, offset)[0]
    offset += OPAQUE_LENGTH_SIZE

    _check_length(response, offset + opaque_length, "Opaque data")
    opaque_data = response[offset:offset + opaque_length]
    offset += opaque_length

    return SpdmMeasurementResponse(
        request=request,
        spdm_version=response[RESPONSE_VERSION_OFFSET],
        response_code=response[RESPONSE_CODE_OFFSET],
        param1=response[RESPONSE_PARAM1_OFFSET],
        param2=response[RESPONSE_PARAM2_OFFSET],
        number_of_blocks=response[RESPONSE_NUMBER_OF_BLOCKS_OFFSET],
        measurement_record=measurement_record,
        nonce=nonce,
        opaque_data=opaque_data,
        signature=response[offset:],
    )


def iter_opaque_fields(opaque_data: bytes) -> Iterator[OpaqueField]:
    """
    Walk the TLV entries of an opaque data block.

    Every header and payload is bounds-checked against the block before it is
    read. Iteration stops cleanly at the end of the block.

    Raises:
        InvalidOpaqueDataTypeError: If a type field is truncated
        InvalidOpaqueDataSizeError: If a length field is truncated or the
            declared length overruns the block
    """
    pos = 0
    end = len(opaque_data)
    while pos < end:
        if pos + OPAQUE_FIELD_TYPE_SIZE > end:
            raise InvalidOpaqueDataTypeError(
                f"Truncated opaque field type at offset {pos}"
            )
        field_type = struct.unpack_from("<H", opaque_data, pos)[0]
        pos += OPAQUE_FIELD_TYPE_SIZE

        if pos + OPAQUE_FIELD_LENGTH_SIZE > end:
            raise InvalidOpaqueDataSizeError(
                f"Truncated length for opaque field {field_type} at offset {pos}"
            )
        field_length = struct.unpack_from("<H", opaque_data, pos)[0]
        pos += OPAQUE_FIELD_LENGTH_SIZE

        if pos + field_length > end:
            raise InvalidOpaqueDataSizeError(
                f"Opaque field {field_type} declares {field_length} bytes, "
                f"only {end - pos} remain"
            )
        yield OpaqueField(field_type=field_type, value=opaque_data[pos:pos + field_length])
        pos += field_length


def _split_pdis(value: bytes, field_type: int) -> List[bytes]:
    if len(value) % PDI_SIZE != 0:
        raise InvalidPdiLengthError(
            f"Opaque field {field_type} length {len(value)} is not a multiple of {PDI_SIZE}"
        )
    return [value[i:i + PDI_SIZE] for i in range(0, len(value), PDI_SIZE)]


def parse_neighbor_pdis(
    report: bytes,
    field_type: int = OPAQUE_FIELD_ID_SWITCH_PDI,
) -> List[bytes]:
    """
    Extract the PDIs of the switches a GPU is connected to.

    Disabled links show up as all-zero PDIs and are returned as-is, in report
    order. When the field appears more than once, the first occurrence wins.

    Args:
        report: Raw GPU attestation report
        field_type: Opaque field identifier carrying the switch PDI list

    Returns:
        List of 8-byte PDIs

    Raises:
        ReportParseError: If the report or opaque data is malformed
        PdiNotFoundError: If the field is absent
    """
    parsed = parse_report(report)
    for opaque_field in iter_opaque_fields(parsed.opaque_data):
        if opaque_field.field_type == field_type:
            return _split_pdis(opaque_field.value, field_type)

    raise PdiNotFoundError(f"Opaque field {field_type} (switch PDIs) not found in report")


def parse_attached_pdis(
    report: bytes,
    device_pdi_type: int = OPAQUE_FIELD_ID_DEVICE_PDI,
    attached_pdis_type: int = OPAQUE_FIELD_ID_SWITCH_GPU_PDIS,
) -> Tuple[List[bytes], bytes]:
    """
    Extract a switch's attached GPU PDIs and its own PDI.

    Scanning stops once both fields have been seen. When a field appears more
    than once, the first occurrence wins.

    Args:
        report: Raw switch attestation report
        device_pdi_type: Opaque field identifier for the switch's own PDI
        attached_pdis_type: Opaque field identifier for the attached GPU PDIs

    Returns:
        (attached_pdis, own_pdi)

    Raises:
        ReportParseError: If the report or opaque data is malformed
        InvalidPdiLengthError: If the own PDI is not exactly 8 bytes
        PdiNotFoundError: If either field is absent
    """
    parsed = parse_report(report)
    own_pdi = None
    attached = None

    for opaque_field in iter_opaque_fields(parsed.opaque_data):
        if own_pdi is None and opaque_field.field_type == device_pdi_type:
            if len(opaque_field.value) != PDI_SIZE:
                raise InvalidPdiLengthError(
                    f"Device PDI field size is {len(opaque_field.value)}, expected {PDI_SIZE}"
                )
            own_pdi = opaque_field.value
        elif attached is None and opaque_field.field_type == attached_pdis_type:
            attached = _split_pdis(opaque_field.value, attached_pdis_type)

        if own_pdi is not None and attached is not None:
            return attached, own_pdi

    if own_pdi is None:
        raise PdiNotFoundError(f"Opaque field {device_pdi_type} (device PDI) not found in report")
    raise PdiNotFoundError(
        f"Opaque field {attached_pdis_type} (attached GPU PDIs) not found in report"
    )
