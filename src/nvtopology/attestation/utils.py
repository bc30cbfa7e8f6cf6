"""
Shared HTTP helpers for the verifier and key-set requests.

Both network calls of a verification round go through here so that library
exceptions are translated into the TransportError family in one place.
"""

import json
import logging
from typing import Any, Optional, Union

import requests

from .types import DEFAULT_TIMEOUT, ParseResponseError, RequestError, ResponseError

logger = logging.getLogger(__name__)


def nonce_to_hex(nonce: Union[bytes, str]) -> str:
    """Nonces travel as lower-case hex; bytes are encoded, strings pass through"""
    if isinstance(nonce, bytes):
        return nonce.hex()
    return nonce


def decode_json_body(status_code: int, text: str) -> Any:
    """
    Check the status code and decode a JSON response body.

    Raises:
        ResponseError: If the status is not 2xx
        ParseResponseError: If the body is not valid JSON
    """
    if not 200 <= status_code < 300:
        logger.error("Request failed with status code %d", status_code)
        raise ResponseError(status_code, text)
    try:
        return json.loads(text)
    except ValueError as e:
        logger.error("Failed to parse response: %s", e)
        raise ParseResponseError(f"Response is not valid JSON: {e}") from e


def get_json(url: str, timeout: float = DEFAULT_TIMEOUT) -> Any:
    """
    Fetch a JSON document with a single GET.

    Raises:
        RequestError: If the request fails or times out
        ResponseError: If the status is not 2xx
        ParseResponseError: If the body is not valid JSON
    """
    try:
        response = requests.get(url, timeout=timeout)
    except requests.RequestException as e:
        logger.error("GET %s failed: %s", url, e)
        raise RequestError(f"GET {url} failed: {e}") from e
    return decode_json_body(response.status_code, response.text)


def post_json(
    url: str,
    payload: Any,
    headers: Optional[dict] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Any:
    """
    Send a JSON body with a single POST and decode the JSON reply.

    Raises:
        RequestError: If the request fails or times out
        ResponseError: If the status is not 2xx
        ParseResponseError: If the body is not valid JSON
    """
    try:
        response = requests.post(url, json=payload, headers=headers, timeout=timeout)
    except requests.RequestException as e:
        logger.error("POST %s failed: %s", url, e)
        raise RequestError(f"POST {url} failed: {e}") from e
    return decode_json_body(response.status_code, response.text)
