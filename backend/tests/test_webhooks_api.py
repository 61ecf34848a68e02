import pytest

KEY = "11111111-1111-4111-1111-111111111111"


@pytest.fixture
async def pending_payment(client):
    resp = await client.post(
        "/api/v1/payments",
        json={"amount": "50.00", "payment_method": "wallet", "payment_provider": "ASYNCSIM"},
        headers={"Idempotency-Key": KEY},
    )
    assert resp.status_code == 202
    return resp.json()


def _callback(status="SUCCEED", transaction_id="PTX123", transaction_no="TXN1"):
    return {"transaction_id": transaction_id, "transaction_no": transaction_no, "status": status}


@pytest.mark.asyncio
async def test_webhook_completes_payment(client, pending_payment):
    resp = await client.post("/api/v1/webhooks/asyncsim", json=_callback())
    assert resp.status_code == 200
    assert resp.json() == {
        "provider_transaction_id": "PTX123",
        "applied": True,
        "processing_status": "COMPLETED",
    }

    replay = await client.post(
        "/api/v1/payments",
        json={"amount": "50.00", "payment_method": "wallet", "payment_provider": "ASYNCSIM"},
        headers={"Idempotency-Key": KEY},
    )
    assert replay.status_code == 200
    data = replay.json()
    assert data["cached"] is True
    assert data["status"] == "completed"
    assert data["transaction_no"] == "TXN1"


@pytest.mark.asyncio
async def test_duplicate_webhook_is_acknowledged_without_change(client, pending_payment):
    await client.post("/api/v1/webhooks/ASYNCSIM", json=_callback())
    version = (await client.get(f"/api/v1/payments/{KEY}")).json()["version"]

    resp = await client.post("/api/v1/webhooks/ASYNCSIM", json=_callback())
    assert resp.status_code == 200
    assert resp.json()["applied"] is False
    assert (await client.get(f"/api/v1/payments/{KEY}")).json()["version"] == version


@pytest.mark.asyncio
async def test_failure_webhook(client, pending_payment):
    resp = await client.post("/api/v1/webhooks/asyncsim", json=_callback(status="FAILED"))
    assert resp.status_code == 200
    assert resp.json()["processing_status"] == "FAILED"

    record = (await client.get(f"/api/v1/payments/{KEY}")).json()
    assert record["processing_status"] == "FAILED"
    assert record["response"]["error"] == "PAYMENT_FAILED"


@pytest.mark.asyncio
async def test_webhook_for_unknown_transaction(client):
    resp = await client.post("/api/v1/webhooks/asyncsim", json=_callback(transaction_id="PTX999"))
    assert resp.status_code == 404
    err = resp.json()["error"]
    assert err["code"] == "UNKNOWN_PROVIDER_TRANSACTION"
    assert err["details"]["provider_transaction_id"] == "PTX999"


@pytest.mark.asyncio
async def test_webhook_with_unparsable_payload(client):
    resp = await client.post(
        "/api/v1/webhooks/asyncsim",
        content=b"not json",
        headers={"Content-Type": "text/plain"},
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_WEBHOOK_PAYLOAD"


@pytest.mark.asyncio
async def test_webhook_missing_status(client):
    resp = await client.post("/api/v1/webhooks/asyncsim", json={"transaction_id": "PTX123"})
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "Invalid webhook: missing 'status'"


@pytest.mark.asyncio
@pytest.mark.parametrize("provider", ["paypal", "syncsim"])
async def test_webhook_for_unsupported_provider(client, provider):
    resp = await client.post(f"/api/v1/webhooks/{provider}", json=_callback())
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "UNSUPPORTED_PROVIDER"
