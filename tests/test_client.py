import json

import pytest
import requests

from x402_facilitator.core.client import FacilitatorClient, FacilitatorUnavailableError
from x402_facilitator.core.types import ErrorReason, SettleResult, VerifyResult

from conftest import NETWORK, PAYER, TX_HASH, make_payload, make_requirements


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text or json.dumps(body)

    def json(self):
        if self._body is None:
            raise json.JSONDecodeError("Expecting value", self.text, 0)
        return self._body


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json, timeout))
        if self.error is not None:
            raise self.error
        return self.response


def make_client(session):
    return FacilitatorClient("https://facilitator.example/", session=session, timeout=5)


def test_verify_posts_facilitator_request():
    session = FakeSession(FakeResponse(body={"isValid": True, "payer": PAYER}))
    payload = make_payload()

    result = make_client(session).verify(payload, make_requirements())

    assert result == VerifyResult.valid(PAYER)
    [(url, body, timeout)] = session.posts
    assert url == "https://facilitator.example/verify"
    assert timeout == 5
    assert body["x402Version"] == 1
    assert body["paymentPayload"] == payload.to_dict()
    assert body["paymentRequirements"]["payTo"] == make_requirements().pay_to


def test_verify_parses_rejection():
    session = FakeSession(
        FakeResponse(
            body={"isValid": False, "invalidReason": "insufficient_funds", "payer": PAYER}
        )
    )

    result = make_client(session).verify(make_payload(), make_requirements())

    assert result.invalid_reason is ErrorReason.INSUFFICIENT_FUNDS


def test_settle_parses_result():
    body = {"success": True, "transaction": TX_HASH, "network": NETWORK, "payer": PAYER}
    session = FakeSession(FakeResponse(body=body))

    result = make_client(session).settle(make_payload(), make_requirements())

    assert result == SettleResult(
        success=True, network=NETWORK, payer=PAYER, transaction=TX_HASH
    )
    assert result.raw == body
    assert session.posts[0][0] == "https://facilitator.example/settle"


def test_server_error():
    session = FakeSession(FakeResponse(status_code=500, text="boom"))
    with pytest.raises(FacilitatorUnavailableError, match="500"):
        make_client(session).verify(make_payload(), make_requirements())


def test_connection_error():
    session = FakeSession(error=requests.ConnectionError("refused"))
    with pytest.raises(FacilitatorUnavailableError):
        make_client(session).settle(make_payload(), make_requirements())


def test_non_json_response():
    session = FakeSession(FakeResponse(text="<html>"))
    with pytest.raises(FacilitatorUnavailableError):
        make_client(session).verify(make_payload(), make_requirements())


def test_unknown_reason_in_response():
    session = FakeSession(FakeResponse(body={"isValid": False, "invalidReason": "mystery"}))
    with pytest.raises(FacilitatorUnavailableError):
        make_client(session).verify(make_payload(), make_requirements())
