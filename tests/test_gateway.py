import json

import httpx
import pytest

from poolpass.errors import UpstreamError
from poolpass.gateway import Flutterwave, MockPay


def flutterwave(handler) -> Flutterwave:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return Flutterwave(secret_key="FLWSECK_TEST-secret", client=client,
                       base_url="https://api.example.test/")


async def charge(gw: Flutterwave):
    return await gw.initialize_charge(
        tx_ref="RSG-PPOOL-123456", amount=3000, currency="NGN",
        redirect_url="https://shop.example/success",
        customer={"email": "ada@example.com", "name": "Ada Lovelace"},
        meta={"gender": "female"},
    )


async def test_initialize_charge_returns_link():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "status": "success",
            "data": {"link": "https://checkout.example/pay/abc"},
        })

    session = await charge(flutterwave(handler))

    assert session == {"payment_link": "https://checkout.example/pay/abc",
                       "tx_ref": "RSG-PPOOL-123456"}
    assert seen["url"] == "https://api.example.test/v3/payments"
    assert seen["auth"] == "Bearer FLWSECK_TEST-secret"
    assert seen["body"]["tx_ref"] == "RSG-PPOOL-123456"
    assert seen["body"]["amount"] == 3000
    assert seen["body"]["customer"]["email"] == "ada@example.com"
    assert seen["body"]["meta"] == {"gender": "female"}


@pytest.mark.parametrize("response", [
    httpx.Response(500, text="boom"),
    httpx.Response(401, json={"status": "error", "message": "bad key"}),
    httpx.Response(200, json={"status": "error", "message": "nope"}),
    httpx.Response(200, json={"status": "success", "data": {}}),
    httpx.Response(200, text="<html>"),
])
async def test_initialize_charge_failures(response):
    with pytest.raises(UpstreamError):
        await charge(flutterwave(lambda request: response))


async def test_network_error_is_upstream_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamError):
        await charge(flutterwave(handler))


async def test_verify_transaction():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert request.url.path == "/v3/transactions/4421/verify"
        return httpx.Response(200, json={
            "status": "success",
            "data": {
                "id": 4421,
                "status": "successful",
                "amount": 3000,
                "currency": "NGN",
                "tx_ref": "RSG-PPOOL-123456",
                "flw_ref": "FLW-MOCK-1",
            },
        })

    info = await flutterwave(handler).verify_transaction("4421")

    assert info == {
        "transaction_id": "4421",
        "status": "successful",
        "amount": 3000,
        "currency": "NGN",
        "tx_ref": "RSG-PPOOL-123456",
        "provider_ref": "FLW-MOCK-1",
    }


async def test_verify_transaction_not_found():
    def handler(request):
        return httpx.Response(404, json={"status": "error"})

    with pytest.raises(UpstreamError):
        await flutterwave(handler).verify_transaction("0")


async def test_mockpay_round_trip():
    gw = MockPay("http://localhost:5000/")
    session = await gw.initialize_charge(
        tx_ref="RSG-PPOOL-123456", amount=3000, currency="NGN",
        redirect_url="/success",
        customer={"email": "ada@example.com", "name": "Ada"},
    )
    assert session["payment_link"] == \
        "http://localhost:5000/mockpay/RSG-PPOOL-123456"
    assert gw.charges["RSG-PPOOL-123456"]["amount"] == 3000

    gw.record("77", tx_ref="RSG-PPOOL-123456", amount=3000)
    info = await gw.verify_transaction("77")
    assert info["status"] == "successful"
    assert info["provider_ref"] == "MOCK-77"
    with pytest.raises(UpstreamError):
        await gw.verify_transaction("78")
