import base64
import json

import pytest

from x402_facilitator.core.payloads import (
    build_facilitator_request,
    build_payment_payload,
    decode_payment_header,
    encode_payment_header,
)
from x402_facilitator.core.types import (
    ErrorReason,
    PayloadError,
    PaymentPayload,
    PaymentRequirements,
    SettleResult,
    UINT256_MAX,
    VerifyResult,
    parse_uint,
)

from conftest import ASSET, DOMAIN, NOW, PAY_TO, PAYER, PAYER_KEY, make_payload, make_requirements


def payload_dict(**changes):
    body = make_payload().to_dict()
    body.update(changes)
    return body


def test_parse_uint_accepts_large_values():
    assert parse_uint(str(UINT256_MAX), "value") == UINT256_MAX
    assert parse_uint(" 42 ", "value") == 42


@pytest.mark.parametrize("raw", ["-1", "1.5", "0x10", "", "abc", True, str(UINT256_MAX + 1)])
def test_parse_uint_rejects(raw):
    with pytest.raises(ValueError):
        parse_uint(raw, "value")


def test_requirements_from_camel_case():
    requirements = PaymentRequirements.from_dict(
        {
            "scheme": "exact",
            "network": "base-sepolia",
            "maxAmountRequired": "10000",
            "payTo": PAY_TO,
            "asset": ASSET,
            "resource": "https://example.com/weather",
            "mimeType": "application/json",
            "maxTimeoutSeconds": 120,
            "extra": {"name": "USDC", "version": "2"},
        }
    )

    assert requirements.max_amount == 10_000
    assert requirements.max_timeout_seconds == 120
    assert requirements.extra_value("name") == "USDC"
    assert requirements.extra_value("missing") is None
    assert requirements.to_dict()["payTo"] == PAY_TO


def test_requirements_default_timeout():
    values = make_requirements().to_dict()
    values.pop("maxTimeoutSeconds")
    assert PaymentRequirements.from_dict(values).max_timeout_seconds == 60


@pytest.mark.parametrize(
    "changes",
    [
        {"maxAmountRequired": "-5"},
        {"payTo": "not-an-address"},
        {"extra": "USDC"},
        {"maxTimeoutSeconds": "soon"},
    ],
)
def test_invalid_requirements(changes):
    values = make_requirements().to_dict()
    values.update(changes)

    with pytest.raises(PayloadError) as excinfo:
        PaymentRequirements.from_dict(values)

    assert excinfo.value.reason is ErrorReason.INVALID_PAYMENT_REQUIREMENTS


def test_missing_requirements_field():
    values = make_requirements().to_dict()
    del values["asset"]
    with pytest.raises(PayloadError, match="asset"):
        PaymentRequirements.from_dict(values)


def test_payload_from_dict():
    payload = PaymentPayload.from_dict(payload_dict())

    assert payload == make_payload()
    assert payload.payer == PAYER
    assert payload.payload.authorization.valid_before_int == NOW + 300


def test_payload_normalises_hex_case():
    body = payload_dict()
    body["payload"]["signature"] = "0X" + body["payload"]["signature"][2:].upper()

    payload = PaymentPayload.from_dict(body)

    assert payload.payload.signature == make_payload().payload.signature


@pytest.mark.parametrize("version", [2, "1", None])
def test_unsupported_version(version):
    with pytest.raises(PayloadError) as excinfo:
        PaymentPayload.from_dict(payload_dict(x402Version=version))
    assert excinfo.value.reason is ErrorReason.INVALID_X402_VERSION


@pytest.mark.parametrize(
    ("field_name", "value"),
    [
        ("value", "12.5"),
        ("validBefore", "-1"),
        ("nonce", "0x1234"),
        ("from", "0x123"),
    ],
)
def test_invalid_authorization_fields(field_name, value):
    body = payload_dict()
    body["payload"]["authorization"][field_name] = value

    with pytest.raises(PayloadError) as excinfo:
        PaymentPayload.from_dict(body)

    assert excinfo.value.reason is ErrorReason.INVALID_PAYLOAD


def test_signature_must_be_hex():
    body = payload_dict()
    body["payload"]["signature"] = "0xnothex"
    with pytest.raises(PayloadError):
        PaymentPayload.from_dict(body)


def test_payment_header_round_trip():
    payload = make_payload()
    assert decode_payment_header(encode_payment_header(payload)) == payload


@pytest.mark.parametrize(
    "header",
    [
        "%%%",
        base64.b64encode(b"not json").decode(),
        base64.b64encode(json.dumps([1, 2]).encode()).decode(),
    ],
)
def test_malformed_payment_header(header):
    with pytest.raises(PayloadError) as excinfo:
        decode_payment_header(header)
    assert excinfo.value.reason is ErrorReason.INVALID_PAYLOAD


def test_build_payment_payload_signs_for_requirements():
    requirements = make_requirements()

    payload = build_payment_payload(
        PAYER_KEY, requirements, DOMAIN, now=NOW, nonce=b"\x42" * 32
    )

    assert payload == make_payload()


def test_facilitator_request_shape():
    body = build_facilitator_request(make_payload(), make_requirements())

    assert body["x402Version"] == 1
    assert body["paymentPayload"]["payload"]["authorization"]["from"] == PAYER
    assert body["paymentRequirements"]["maxAmountRequired"] == "1000000"


def test_verify_result_wire_shape():
    assert VerifyResult.valid(PAYER).to_dict() == {
        "isValid": True,
        "invalidReason": None,
        "payer": PAYER,
    }
    invalid = VerifyResult.invalid(ErrorReason.INSUFFICIENT_FUNDS, PAYER)
    assert invalid.to_dict()["invalidReason"] == "insufficient_funds"


def test_verify_result_without_reason_falls_back_to_invalid_scheme():
    result = VerifyResult.from_dict({"isValid": False, "payer": PAYER})
    assert result.invalid_reason is ErrorReason.INVALID_SCHEME


def test_settle_result_wire_shape():
    success = SettleResult(success=True, network="base", payer=PAYER, transaction="0xabc")
    assert "errorReason" not in success.to_dict()

    failure = SettleResult.failure(
        ErrorReason.INVALID_TRANSACTION_STATE, network="base", payer=PAYER
    )
    assert failure.to_dict() == {
        "success": False,
        "transaction": "",
        "network": "base",
        "payer": PAYER,
        "errorReason": "invalid_transaction_state",
    }
    assert SettleResult.from_dict(failure.to_dict()) == failure
