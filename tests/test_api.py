import asyncio

import pytest

from x402_facilitator import (
    ConfigError,
    ErrorReason,
    FacilitatorConfig,
    create_facilitator,
    create_facilitator_client,
    parse_facilitator_request,
    settle_request,
    verify_request,
)
from x402_facilitator.core.payloads import build_facilitator_request
from x402_facilitator.core.types import PayloadError

from conftest import NETWORK, PAYER, make_payload, make_requirements

KEY = "0x" + "33" * 32


def request_body():
    return build_facilitator_request(make_payload(), make_requirements())


def test_parse_facilitator_request():
    payload, requirements = parse_facilitator_request(request_body())
    assert payload == make_payload()
    assert requirements == make_requirements()


def test_missing_version_defaults_to_v1():
    body = request_body()
    del body["x402Version"]
    payload, _ = parse_facilitator_request(body)
    assert payload.x402_version == 1


@pytest.mark.parametrize(
    ("body", "reason"),
    [
        ([], ErrorReason.INVALID_PAYLOAD),
        ({"x402Version": 2}, ErrorReason.INVALID_X402_VERSION),
        ({"paymentRequirements": {}}, ErrorReason.INVALID_PAYLOAD),
        ({"paymentPayload": {}, "paymentRequirements": "x"}, ErrorReason.INVALID_PAYMENT_REQUIREMENTS),
        ({"paymentPayload": {}, "paymentRequirements": {}}, ErrorReason.INVALID_PAYLOAD),
    ],
)
def test_malformed_requests(body, reason):
    with pytest.raises(PayloadError) as excinfo:
        parse_facilitator_request(body)
    assert excinfo.value.reason is reason


def test_verify_request_reports_malformed_body(facilitator):
    body = request_body()
    body["paymentPayload"]["payload"]["authorization"]["value"] = "lots"

    result = asyncio.run(verify_request(facilitator, body))

    assert not result.is_valid
    assert result.invalid_reason is ErrorReason.INVALID_PAYLOAD
    assert result.payer == PAYER


def test_verify_request_runs_facilitator(facilitator):
    result = asyncio.run(verify_request(facilitator, request_body()))
    assert result.is_valid


def test_settle_request_reports_malformed_body(facilitator, chain):
    body = request_body()
    body["paymentRequirements"]["payTo"] = "nobody"

    result = asyncio.run(settle_request(facilitator, body))

    assert not result.success
    assert result.error_reason is ErrorReason.INVALID_PAYMENT_REQUIREMENTS
    assert result.network == NETWORK
    assert chain.submissions == []


def test_settle_request_runs_facilitator(facilitator, chain):
    result = asyncio.run(settle_request(facilitator, request_body()))
    assert result.success
    assert len(chain.submissions) == 1


def test_create_facilitator_requires_rpc_url():
    with pytest.raises(ConfigError):
        create_facilitator(env_file=None, base={})


def test_create_facilitator_rejects_config_and_parameters():
    with pytest.raises(ValueError):
        create_facilitator(config=FacilitatorConfig(), rpc_url="http://localhost:8545")


def test_facilitator_without_key_only_verifies():
    facilitator = create_facilitator(
        config=FacilitatorConfig(rpc_url="http://localhost:8545")
    )
    assert facilitator._writer is None


def test_facilitator_with_key_can_settle():
    facilitator = create_facilitator(
        config=FacilitatorConfig(rpc_url="http://localhost:8545", private_key=KEY)
    )
    assert facilitator._writer is facilitator._reader


def test_facilitator_receives_erc6492_validator():
    validator = "0x" + "AB" * 20
    facilitator = create_facilitator(
        config=FacilitatorConfig(rpc_url="http://localhost:8545", erc6492_validator=validator)
    )
    assert facilitator._reader._erc6492_validator == validator


def test_create_facilitator_client_uses_configured_url():
    client = create_facilitator_client(
        env_file=None,
        base={"X402_FACILITATOR_URL": "https://facilitator.example/"},
        request_timeout_seconds=7,
    )
    assert client.base_url == "https://facilitator.example"
    assert client.timeout == 7
