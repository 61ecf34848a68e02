import pytest

KEY = "11111111-1111-4111-1111-111111111111"


def _payload(**overrides):
    base = {
        "amount": "50.00",
        "payment_method": "card",
        "description": "order 42",
        "payment_provider": "SYNCSIM",
    }
    base.update(overrides)
    return base


async def _pay(client, key=KEY, **overrides):
    return await client.post(
        "/api/v1/payments", json=_payload(**overrides), headers={"Idempotency-Key": key}
    )


# --- Processing ---


@pytest.mark.asyncio
async def test_create_payment(client):
    resp = await _pay(client)
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "completed"
    assert data["transaction_no"].startswith("ch_")
    assert data["payment_provider"] == "SYNCSIM"
    assert data["idempotency_key"] == KEY
    assert data["cached"] is False
    assert data["error"] is None


@pytest.mark.asyncio
async def test_replay_returns_cached_response(client):
    first = (await _pay(client)).json()
    resp = await _pay(client)
    assert resp.status_code == 200
    data = resp.json()
    assert data["cached"] is True
    assert data["transaction_no"] == first["transaction_no"]
    assert data["created_at"] == first["created_at"]


@pytest.mark.asyncio
async def test_provider_name_is_case_insensitive(client):
    resp = await _pay(client, payment_provider="syncsim")
    assert resp.status_code == 200
    assert resp.json()["payment_provider"] == "SYNCSIM"


@pytest.mark.asyncio
async def test_async_provider_returns_202_pending(client):
    resp = await _pay(client, payment_provider="ASYNCSIM")
    assert resp.status_code == 202
    data = resp.json()
    assert data["status"] == "pending"
    assert data["provider_transaction_id"] == "PTX123"
    assert data["transaction_no"] is None


@pytest.mark.asyncio
async def test_rejected_payment_is_200_with_error_details(client):
    resp = await _pay(client, amount="20000")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "failed"
    assert data["error"] == "PAYMENT_FAILED"
    assert data["message"] == "Payment amount exceeds limit"


# --- Idempotency errors ---


@pytest.mark.asyncio
async def test_missing_idempotency_key_header(client):
    resp = await client.post("/api/v1/payments", json=_payload())
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "BAD_REQUEST"


@pytest.mark.asyncio
async def test_malformed_idempotency_key(client):
    resp = await _pay(client, key="order-42")
    assert resp.status_code == 400
    err = resp.json()["error"]
    assert err["code"] == "INVALID_IDEMPOTENCY_KEY"
    assert err["retryable"] is False


@pytest.mark.asyncio
async def test_reused_key_with_different_body(client):
    await _pay(client, amount="50.00")
    resp = await _pay(client, amount="75.00")
    assert resp.status_code == 409
    err = resp.json()["error"]
    assert err["code"] == "IDEMPOTENCY_KEY_CONFLICT"
    assert err["details"]["idempotency_key"] == KEY
    assert err["retryable"] is False


@pytest.mark.asyncio
async def test_duplicate_of_pending_payment_is_in_progress(client):
    await _pay(client, payment_provider="ASYNCSIM")
    resp = await _pay(client, payment_provider="ASYNCSIM")
    assert resp.status_code == 409
    err = resp.json()["error"]
    assert err["code"] == "REQUEST_IN_PROGRESS"
    assert err["retryable"] is True


# --- Validation ---


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"amount": "0"},
        {"amount": "-5"},
        {"amount": "1.23456"},
        {"payment_method": "   "},
        {"payment_provider": "PAYPAL"},
        {"description": "x" * 256},
    ],
)
async def test_invalid_payment_body(client, overrides):
    resp = await _pay(client, **overrides)
    assert resp.status_code == 422
    err = resp.json()["error"]
    assert err["code"] == "VALIDATION_ERROR"
    assert err["details"]["errors"]


@pytest.mark.asyncio
async def test_validation_runs_before_anything_is_stored(client):
    await _pay(client, amount="-5")
    resp = await client.get(f"/api/v1/payments/{KEY}")
    assert resp.status_code == 404


# --- Lookup ---


@pytest.mark.asyncio
async def test_get_payment_record(client):
    created = (await _pay(client)).json()
    resp = await client.get(f"/api/v1/payments/{KEY}")
    assert resp.status_code == 200
    data = resp.json()
    assert data["idempotency_key"] == KEY
    assert data["processing_status"] == "COMPLETED"
    assert data["payment_status"] == "completed"
    assert data["version"] == 1
    assert data["transaction_no"] == created["transaction_no"]
    assert data["response"]["transaction_no"] == created["transaction_no"]


@pytest.mark.asyncio
async def test_get_unknown_payment(client):
    resp = await client.get(f"/api/v1/payments/{KEY}")
    assert resp.status_code == 404
    err = resp.json()["error"]
    assert err["code"] == "NOT_FOUND"
    assert err["message"] == "Payment not found"


@pytest.mark.asyncio
async def test_get_payment_with_malformed_key(client):
    resp = await client.get("/api/v1/payments/order-42")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_IDEMPOTENCY_KEY"
