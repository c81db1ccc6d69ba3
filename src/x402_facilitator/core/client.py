"""
HTTP client for a remote x402 facilitator.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import requests

from .payloads import build_facilitator_request
from .types import PaymentPayload, PaymentRequirements, SettleResult, VerifyResult

__all__ = [
    "FacilitatorClient",
    "FacilitatorUnavailableError",
]


class FacilitatorUnavailableError(RuntimeError):
    """The remote facilitator could not be reached or answered with an error."""


def _post_json(
    session: requests.Session,
    url: str,
    body: Dict[str, Any],
    timeout: float,
) -> Dict[str, Any]:
    try:
        response = session.post(url, json=body, timeout=timeout)
    except requests.RequestException as exc:
        raise FacilitatorUnavailableError(f"Request to {url} failed: {exc}") from exc
    if response.status_code >= 400:
        raise FacilitatorUnavailableError(
            f"Facilitator responded with {response.status_code}: {response.text}"
        )
    try:
        payload = response.json()
    except json.JSONDecodeError as exc:
        raise FacilitatorUnavailableError(
            f"Failed to parse JSON from facilitator at {url}: {response.text}"
        ) from exc
    if not isinstance(payload, dict):
        raise FacilitatorUnavailableError(f"Unexpected response from {url}: {payload!r}")
    return payload


class FacilitatorClient:
    """
    Thin wrapper around a remote facilitator's ``/verify`` and ``/settle``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _call(self, endpoint: str, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/{endpoint}"
        logging.info("Submitting payment to %s", url)
        return _post_json(self.session, url, body, self.timeout)

    def verify(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> VerifyResult:
        response = self._call("verify", build_facilitator_request(payload, requirements))
        try:
            return VerifyResult.from_dict(response)
        except ValueError as exc:
            raise FacilitatorUnavailableError(f"Unexpected verify response: {response}") from exc

    def settle(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> SettleResult:
        response = self._call("settle", build_facilitator_request(payload, requirements))
        try:
            return SettleResult.from_dict(response)
        except ValueError as exc:
            raise FacilitatorUnavailableError(f"Unexpected settle response: {response}") from exc
