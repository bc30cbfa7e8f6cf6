"""
Client for the remote attestation service (NRAS).

One round is a single POST of the evidence list followed by a single GET of
the verifier's key set. Neither call is retried: a retry needs a fresh nonce
and therefore a fresh round, which is the caller's decision.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import httpx

from .nras_token import (
    TokenVerifier,
    create_jwks_url,
    extract_result_token,
    verify_token_with_jwks,
)
from .types import (
    ARCH_KEY,
    CLAIMS_VERSION_KEY,
    EVIDENCE_LIST_KEY,
    NONCE_KEY,
    NVIDIA_OCSP_ALLOW_CERT_HOLD_HEADER,
    Arch,
    AttestationClaims,
    DeviceEvidence,
    RemoteAttestationOptions,
    RequestError,
)
from .utils import decode_json_body, nonce_to_hex, post_json

logger = logging.getLogger(__name__)

EvidenceItem = Union[DeviceEvidence, Dict[str, str]]


def build_headers(options: RemoteAttestationOptions) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if options.allow_hold_cert:
        headers[NVIDIA_OCSP_ALLOW_CERT_HOLD_HEADER] = "true"
    if options.service_key:
        headers["Authorization"] = options.service_key
    return headers


def build_payload(
    evidence_list: Sequence[EvidenceItem],
    nonce: Union[bytes, str],
    claims_version: str,
    arch: Arch,
) -> Dict[str, Any]:
    """Assemble the JSON request body; each evidence entry is {certificate, evidence}"""
    return {
        NONCE_KEY: nonce_to_hex(nonce),
        EVIDENCE_LIST_KEY: [
            e.to_dict() if isinstance(e, DeviceEvidence) else
            {"certificate": e["certificate"], "evidence": e["evidence"]}
            for e in evidence_list
        ],
        CLAIMS_VERSION_KEY: claims_version,
        ARCH_KEY: arch.value,
    }


class AttestationClient:
    """Submits evidence for one device architecture and verifies the verdict"""

    def __init__(
        self,
        arch: Arch = Arch.HOPPER,
        options: Optional[RemoteAttestationOptions] = None,
        token_verifier: Optional[TokenVerifier] = None,
    ):
        self.arch = Arch(arch)
        self.options = options or RemoteAttestationOptions()
        self.token_verifier = token_verifier or TokenVerifier(timeout=self.options.timeout)

    def post_evidence(
        self,
        evidence_list: Sequence[EvidenceItem],
        nonce: Union[bytes, str],
        options: Optional[RemoteAttestationOptions] = None,
    ) -> Any:
        """
        POST the evidence list and return the raw JSON response.

        Raises:
            RequestError: If the request fails or times out
            ResponseError: If the verifier returns a non-success status
            ParseResponseError: If the response is not valid JSON
        """
        options = options or self.options
        url = options.resolve_url(self.arch)
        payload = build_payload(evidence_list, nonce, options.claims_version, self.arch)
        logger.debug(
            "Sending %d %s evidence entries to %s",
            len(evidence_list), self.arch.value, url,
        )
        return post_json(url, payload, headers=build_headers(options), timeout=options.timeout)

    def submit(
        self,
        evidence_list: Sequence[EvidenceItem],
        nonce: Union[bytes, str],
        options: Optional[RemoteAttestationOptions] = None,
    ) -> Tuple[bool, Any]:
        """
        Submit evidence and verify the signed verdict.

        A verified negative verdict is returned as (False, response), not
        raised.

        Returns:
            (overall_attestation_result, raw_response)

        Raises:
            TransportError: If either network call fails
            TokenVerificationError: If the result token cannot be verified
        """
        options = options or self.options
        response_json = self.post_evidence(evidence_list, nonce, options)
        claims = self.verify_response(response_json, options)
        logger.info(
            "Remote %s attestation result: %s",
            self.arch.value, claims.overall_attestation_result,
        )
        return claims.overall_attestation_result, response_json

    def verify_response(
        self,
        response_json: Any,
        options: Optional[RemoteAttestationOptions] = None,
    ) -> AttestationClaims:
        options = options or self.options
        token = extract_result_token(response_json)
        return self.token_verifier.verify(
            options.resolve_url(self.arch), token, timeout=options.timeout
        )


class AsyncAttestationClient:
    """
    Exactly like AttestationClient, but async using httpx.AsyncClient.

    Cancelling either await leaves nothing behind: claims only exist once
    the token has been verified.
    """

    def __init__(
        self,
        arch: Arch = Arch.HOPPER,
        options: Optional[RemoteAttestationOptions] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.arch = Arch(arch)
        self.options = options or RemoteAttestationOptions()
        self._transport = transport

    async def _request(self, method: str, url: str, timeout: float, **kwargs) -> Any:
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.HTTPError as e:
                logger.error("%s %s failed: %s", method, url, e)
                raise RequestError(f"{method} {url} failed: {e}") from e
        return decode_json_body(response.status_code, response.text)

    async def post_evidence(
        self,
        evidence_list: Sequence[EvidenceItem],
        nonce: Union[bytes, str],
        options: Optional[RemoteAttestationOptions] = None,
    ) -> Any:
        options = options or self.options
        url = options.resolve_url(self.arch)
        payload = build_payload(evidence_list, nonce, options.claims_version, self.arch)
        logger.debug(
            "Sending %d %s evidence entries to %s",
            len(evidence_list), self.arch.value, url,
        )
        return await self._request(
            "POST", url, options.timeout, json=payload, headers=build_headers(options)
        )

    async def submit(
        self,
        evidence_list: Sequence[EvidenceItem],
        nonce: Union[bytes, str],
        options: Optional[RemoteAttestationOptions] = None,
    ) -> Tuple[bool, Any]:
        options = options or self.options
        response_json = await self.post_evidence(evidence_list, nonce, options)
        token = extract_result_token(response_json)
        jwks = await self._request(
            "GET", create_jwks_url(options.resolve_url(self.arch)), options.timeout
        )
        claims = verify_token_with_jwks(token, jwks)
        logger.info(
            "Remote %s attestation result: %s",
            self.arch.value, claims.overall_attestation_result,
        )
        return claims.overall_attestation_result, response_json


def evidence_from_dicts(items: List[Dict[str, str]]) -> List[DeviceEvidence]:
    """Load evidence entries previously saved as JSON"""
    return [DeviceEvidence(certificate=i["certificate"], evidence=i["evidence"]) for i in items]
