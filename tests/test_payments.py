import asyncio
import json

import httpx
import pytest

from config import Settings, settings
from conftest import RejectingVerifier
from errors import ErrorKind, StoreError
from main import app
from payments import (
    MockChainVerifier,
    PriceFeed,
    RpcChainVerifier,
    build_chain_verifier,
    payment_signature,
    verify_payment_signature,
)

WALLET = "0x" + "ab" * 20
SENDER = "0x" + "cd" * 20
TX_HASH = "0x" + "ab12" * 16


def _mutate(signature):
    return signature[:-1] + ("0" if signature[-1] != "0" else "1")


def test_signature_round_trip_and_single_character_change():
    sig = payment_signature("order_1", "pay_1", "secret")
    assert verify_payment_signature("order_1", "pay_1", sig, "secret")
    assert not verify_payment_signature("order_1", "pay_1", _mutate(sig), "secret")
    assert not verify_payment_signature("order_1", "pay_2", sig, "secret")
    assert not verify_payment_signature("order_1", "pay_1", sig, "other-secret")


@pytest.fixture
def razorpay_secret(monkeypatch):
    monkeypatch.setattr(settings, "RAZORPAY_KEY_SECRET", "rzp_secret")
    return "rzp_secret"


def _start_payment(client, user, order_id):
    res = client.post("/api/payment/create-order", json={"order_id": order_id}, headers=user["headers"])
    assert res.status_code == 200, res.json()
    return res.json()["order_id"]


def _verify_body(order_id, provider_order_id, secret, payment_id="pay_ABC", signature=None):
    return {
        "razorpay_order_id": provider_order_id,
        "razorpay_payment_id": payment_id,
        "razorpay_signature": signature or payment_signature(provider_order_id, payment_id, secret),
        "order_id": order_id,
    }


def _pay(client, user, order_id, secret, payment_id="pay_ABC"):
    provider_order_id = _start_payment(client, user, order_id)
    body = _verify_body(order_id, provider_order_id, secret, payment_id)
    return client.post("/api/payment/verify", json=body, headers=user["headers"])


def test_verify_marks_order_paid_once(client, customer, razorpay_secret, make_product, place_order):
    order = place_order(make_product())
    provider_order_id = _start_payment(client, customer, order["_id"])
    body = _verify_body(order["_id"], provider_order_id, razorpay_secret)

    first = client.post("/api/payment/verify", json=body, headers=customer["headers"])
    assert first.status_code == 200
    paid = first.json()["order"]
    assert first.json()["message"] == "Payment verified successfully"
    assert paid["payment_status"] == "paid"
    assert paid["order_status"] == "confirmed"
    assert paid["payment_details"]["transaction_id"] == "pay_ABC"
    assert len(paid["status_history"]) == 2

    again = client.post("/api/payment/verify", json=body, headers=customer["headers"])
    repeat = again.json()["order"]
    assert again.status_code == 200
    assert repeat["order_status"] == "confirmed"
    assert len(repeat["status_history"]) == 2
    assert repeat["payment_details"]["paid_at"] == paid["payment_details"]["paid_at"]


def test_verify_rejects_bad_signature_without_touching_order(client, db, customer, razorpay_secret, make_product, place_order):
    order = place_order(make_product())
    provider_order_id = _start_payment(client, customer, order["_id"])
    bad = _mutate(payment_signature(provider_order_id, "pay_ABC", razorpay_secret))

    body = _verify_body(order["_id"], provider_order_id, razorpay_secret, signature=bad)
    res = client.post("/api/payment/verify", json=body, headers=customer["headers"])
    assert res.status_code == 400
    assert res.json() == {"success": False, "message": "Invalid signature"}

    stored = db["order"].find_one({"order_number": order["order_number"]})
    assert stored["payment_status"] == "pending"
    assert stored["order_status"] == "pending"


def test_signature_for_one_order_cannot_settle_another(client, db, customer, razorpay_secret, make_product, place_order):
    cheap = place_order(make_product(name="Toe Ring", price=100))
    pricey = place_order(make_product(name="Bridal Set", price=500000))
    cheap_provider_order = _start_payment(client, customer, cheap["_id"])
    _start_payment(client, customer, pricey["_id"])

    body = _verify_body(pricey["_id"], cheap_provider_order, razorpay_secret, payment_id="pay_CHEAP")
    res = client.post("/api/payment/verify", json=body, headers=customer["headers"])
    assert res.status_code == 400
    assert res.json()["message"] == "Payment does not match this order"

    stored = db["order"].find_one({"order_number": pricey["order_number"]})
    assert stored["payment_status"] == "pending"
    assert stored["order_status"] == "pending"


def test_verify_without_provider_order_is_rejected(client, customer, razorpay_secret, make_product, place_order):
    order = place_order(make_product())
    body = _verify_body(order["_id"], "order_ELSEWHERE", razorpay_secret)
    res = client.post("/api/payment/verify", json=body, headers=customer["headers"])
    assert res.status_code == 400


def test_provider_payment_settles_only_one_order(client, db, customer, razorpay_secret, make_product, place_order):
    ring = make_product(stock=5)
    first = place_order(ring)
    second = place_order(ring)
    assert _pay(client, customer, first["_id"], razorpay_secret, payment_id="pay_SAME").status_code == 200

    res = _pay(client, customer, second["_id"], razorpay_secret, payment_id="pay_SAME")
    assert res.status_code == 400
    assert res.json()["message"] == "Transaction already used for another order"
    assert db["order"].find_one({"order_number": second["order_number"]})["payment_status"] == "pending"


def test_card_path_refuses_wallet_and_cod_orders(client, db, customer, razorpay_secret, make_product, place_order):
    ring = make_product(stock=5)
    for method in ("wallet", "cod"):
        order = place_order(ring, payment_method=method)
        created = client.post("/api/payment/create-order", json={"order_id": order["_id"]}, headers=customer["headers"])
        assert created.status_code == 400

        db["order"].update_one(
            {"order_number": order["order_number"]},
            {"$set": {"payment_details.provider_order_id": "order_FORGED"}},
        )
        body = _verify_body(order["_id"], "order_FORGED", razorpay_secret)
        res = client.post("/api/payment/verify", json=body, headers=customer["headers"])
        assert res.status_code == 400
        assert res.json()["message"] == "Order not configured for online payment"
        assert db["order"].find_one({"order_number": order["order_number"]})["payment_status"] == "pending"


def test_verify_needs_configured_secret(client, customer, monkeypatch, make_product, place_order):
    monkeypatch.setattr(settings, "RAZORPAY_KEY_SECRET", "")
    order = place_order(make_product())
    res = client.post("/api/payment/verify", json=_verify_body(order["_id"], "order_TEST1", "x"), headers=customer["headers"])
    assert res.status_code == 503


def test_payment_of_an_already_confirmed_order_keeps_its_status(client, customer, admin, razorpay_secret, make_product, place_order):
    order = place_order(make_product())
    client.put(f"/api/orders/{order['_id']}/status", json={"status": "confirmed"}, headers=admin["headers"])
    client.put(f"/api/orders/{order['_id']}/status", json={"status": "processing"}, headers=admin["headers"])

    paid = _pay(client, customer, order["_id"], razorpay_secret).json()["order"]
    assert paid["payment_status"] == "paid"
    assert paid["order_status"] == "processing"


def test_create_provider_order(client, db, customer, other_customer, make_product, place_order):
    order = place_order(make_product(price=10000))

    assert client.post(
        "/api/payment/create-order", json={"order_id": order["_id"]}, headers=other_customer["headers"],
    ).status_code == 403

    res = client.post("/api/payment/create-order", json={"order_id": order["_id"]}, headers=customer["headers"])
    assert res.status_code == 200
    assert res.json() == {
        "success": True, "order_id": "order_TEST1", "amount": 1180000, "currency": "INR", "key_id": "rzp_test_key",
    }
    assert app.state.razorpay.calls == [(1180000, order["order_number"], "INR")]
    stored = db["order"].find_one({"order_number": order["order_number"]})
    assert stored["payment_details"]["provider_order_id"] == "order_TEST1"


def test_create_provider_order_rejects_paid_order(client, customer, razorpay_secret, make_product, place_order):
    order = place_order(make_product())
    _pay(client, customer, order["_id"], razorpay_secret)
    res = client.post("/api/payment/create-order", json={"order_id": order["_id"]}, headers=customer["headers"])
    assert res.status_code == 400
    assert res.json()["message"] == "Order is already paid"


def test_exchange_rate(client):
    res = client.get("/api/payment/exchange-rate")
    assert res.status_code == 200
    assert res.json()["eth_price_in_inr"] == 250000.0
    assert res.json()["inr_to_eth_rate"] == pytest.approx(4e-6)


def test_crypto_payment_with_mock_verifier(client, customer, make_product, place_order):
    order = place_order(make_product(), payment_method="wallet")
    res = client.post("/api/payment/verify-crypto", json={
        "order_id": order["_id"], "tx_hash": TX_HASH, "amount_paid": 0.047, "currency": "ETH",
    }, headers=customer["headers"])

    assert res.status_code == 200
    assert res.json()["message"] == "Crypto payment verified and order confirmed"
    paid = res.json()["order"]
    assert paid["payment_status"] == "paid"
    assert paid["order_status"] == "confirmed"
    assert paid["payment_details"]["transaction_id"] == TX_HASH
    assert paid["payment_details"]["blockchain_verified"] is True
    assert paid["payment_details"]["verifier"] == "mock"


def test_one_transfer_cannot_settle_two_orders(client, db, customer, make_product, place_order):
    ring = make_product(stock=5)
    first = place_order(ring, payment_method="wallet")
    second = place_order(ring, payment_method="wallet")
    body = {"tx_hash": TX_HASH, "amount_paid": 0.047, "currency": "ETH"}

    ok = client.post("/api/payment/verify-crypto", json={**body, "order_id": first["_id"]}, headers=customer["headers"])
    assert ok.status_code == 200

    verifier = RejectingVerifier()
    app.state.chain_verifier = verifier
    reused = client.post(
        "/api/payment/verify-crypto",
        json={**body, "tx_hash": TX_HASH.upper().replace("0X", "0x"), "order_id": second["_id"]},
        headers=customer["headers"],
    )
    assert reused.status_code == 400
    assert reused.json()["message"] == "Transaction already used for another order"
    assert verifier.calls == 0
    assert db["order"].count_documents({"payment_details.transaction_id": TX_HASH}) == 1
    assert db["order"].find_one({"order_number": second["order_number"]})["payment_status"] == "pending"


def test_crypto_payment_requires_wallet_order(client, db, customer, make_product, place_order):
    order = place_order(make_product(), payment_method="card")
    res = client.post("/api/payment/verify-crypto", json={
        "order_id": order["_id"], "tx_hash": TX_HASH, "amount_paid": 0.047, "currency": "ETH",
    }, headers=customer["headers"])
    assert res.status_code == 400
    assert res.json()["message"] == "Order not configured for crypto payment"
    assert db["order"].find_one({"order_number": order["order_number"]})["payment_status"] == "pending"


def test_rejected_transaction_leaves_order_unpaid(client, db, customer, make_product, place_order):
    verifier = RejectingVerifier("Transaction failed on blockchain")
    app.state.chain_verifier = verifier
    order = place_order(make_product(), payment_method="wallet")

    res = client.post("/api/payment/verify-crypto", json={
        "order_id": order["_id"], "tx_hash": TX_HASH, "amount_paid": 0.047, "currency": "ETH",
    }, headers=customer["headers"])

    assert res.status_code == 400
    assert res.json()["message"] == "Transaction failed on blockchain"
    assert res.json()["details"]["verified"] is False
    assert verifier.calls == 1
    stored = db["order"].find_one({"order_number": order["order_number"]})
    assert stored["payment_status"] == "pending"
    assert stored["order_status"] == "pending"


def test_crypto_payment_rejects_non_positive_amount(client, customer, make_product, place_order):
    order = place_order(make_product(), payment_method="wallet")
    res = client.post("/api/payment/verify-crypto", json={
        "order_id": order["_id"], "tx_hash": TX_HASH, "amount_paid": 0, "currency": "ETH",
    }, headers=customer["headers"])
    assert res.status_code == 422


def _rpc_transport(receipt, tx, latest="0x14"):
    results = {
        "eth_getTransactionReceipt": receipt,
        "eth_getTransactionByHash": tx,
        "eth_blockNumber": latest,
    }

    def handler(request):
        body = json.loads(request.content)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": results[body["method"]]})

    return httpx.MockTransport(handler)


def _verify_rpc(transport, recipient=WALLET):
    verifier = RpcChainVerifier("http://rpc.test", transport=transport)
    return asyncio.run(verifier.verify(TX_HASH, recipient))


def test_rpc_verifier_accepts_successful_transfer():
    transport = _rpc_transport(
        {"status": "0x1", "blockNumber": "0x10"},
        {"to": WALLET.upper().replace("0X", "0x"), "from": SENDER, "value": hex(5 * 10 ** 17)},
    )
    result = _verify_rpc(transport)
    assert result.verified
    assert result.amount == "0.5"
    assert result.block_number == 16
    assert result.confirmations == 5
    assert result.from_address == SENDER


def test_rpc_verifier_rejects_wrong_recipient():
    transport = _rpc_transport({"status": "0x1", "blockNumber": "0x10"}, {"to": SENDER, "from": SENDER, "value": "0x1"})
    result = _verify_rpc(transport)
    assert not result.verified
    assert result.message == f"Transaction sent to wrong address. Expected: {WALLET}, Got: {SENDER}"


def test_rpc_verifier_rejects_reverted_and_unknown_transactions():
    reverted = _verify_rpc(_rpc_transport({"status": "0x0", "blockNumber": "0x10"}, None))
    assert reverted.message == "Transaction failed on blockchain"

    missing = _verify_rpc(_rpc_transport(None, None))
    assert missing.message == "Transaction not found on blockchain"
    assert not missing.verified


def test_rpc_errors_are_upstream_failures():
    def handler(request):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "node down"}})

    with pytest.raises(StoreError) as exc:
        _verify_rpc(httpx.MockTransport(handler))
    assert exc.value.kind == ErrorKind.UPSTREAM_FAILURE
    assert exc.value.status_code == 503


def test_build_chain_verifier_refuses_mock_in_production():
    config = Settings()
    config.ENVIRONMENT = "production"
    config.CHAIN_VERIFIER = "mock"
    with pytest.raises(RuntimeError):
        build_chain_verifier(config)

    config.CHAIN_VERIFIER = "rpc"
    config.ETH_RPC_URL = "http://rpc.test"
    assert isinstance(build_chain_verifier(config), RpcChainVerifier)

    config.ETH_RPC_URL = ""
    with pytest.raises(RuntimeError):
        build_chain_verifier(config)

    config.ENVIRONMENT = "development"
    config.CHAIN_VERIFIER = "mock"
    assert isinstance(build_chain_verifier(config), MockChainVerifier)


def test_price_feed_parses_and_fails_cleanly():
    ok = httpx.MockTransport(lambda request: httpx.Response(200, json={"ethereum": {"inr": 245000.5}}))
    assert asyncio.run(PriceFeed("http://feed.test", transport=ok).eth_price_in_inr()) == 245000.5

    down = httpx.MockTransport(lambda request: httpx.Response(500, text="oops"))
    with pytest.raises(StoreError) as exc:
        asyncio.run(PriceFeed("http://feed.test", transport=down).eth_price_in_inr())
    assert exc.value.message == "Error fetching real-time crypto rate."
