import uuid

from fastapi.testclient import TestClient

from ..core.config import Settings, get_settings
from ..main import app


def _create(client: TestClient, name: str) -> dict:
    return client.post(
        "/accounts",
        json={"email": f"{name.lower()}@example.com", "owner_name": name},
    ).json()


def test_list_accounts(client: TestClient) -> None:
    _create(client, "Alice")
    _create(client, "Bob")

    response = client.get("/admin/accounts")

    assert response.status_code == 200
    assert {a["email"] for a in response.json()} == {"alice@example.com", "bob@example.com"}


def test_blocked_account_cannot_send(client: TestClient) -> None:
    sender = _create(client, "Carol")
    receiver = _create(client, "Dave")

    blocked = client.patch(f"/admin/accounts/{sender['id']}/block", json={"blocked": True})
    assert blocked.status_code == 200
    assert blocked.json()["is_blocked"] is True

    key = str(uuid.uuid4())
    body = {"sender_id": sender["id"], "receiver": receiver["id"], "amount": 10}
    response = client.post("/transfers", json=body, headers={"Idempotency-Key": key})
    assert response.status_code == 403
    assert response.json()["error_code"] == "ACCOUNT_BLOCKED"

    # nothing moved, so the same key is usable once the account is unblocked
    client.patch(f"/admin/accounts/{sender['id']}/block", json={"blocked": False})
    retry = client.post("/transfers", json=body, headers={"Idempotency-Key": key})
    assert retry.status_code == 200


def test_transaction_monitoring_filters(client: TestClient) -> None:
    sender = _create(client, "Erin")
    receiver = _create(client, "Frank")
    bystander = _create(client, "Grace")

    client.post(
        "/transfers",
        json={"sender_id": sender["id"], "receiver": receiver["id"], "amount": 10},
        headers={"Idempotency-Key": str(uuid.uuid4())},
    )
    client.post(
        "/transfers",
        json={
            "sender_id": sender["id"],
            "receiver": receiver["id"],
            "amount": sender["balance"] * 2,
        },
        headers={"Idempotency-Key": str(uuid.uuid4())},
    )

    failed = client.get("/admin/transactions", params={"status": "failed"}).json()
    assert len(failed) == 1
    assert failed[0]["failure_reason"] == "INSUFFICIENT_FUNDS"

    by_account = client.get(
        "/admin/transactions", params={"account_id": receiver["id"]}
    ).json()
    assert len(by_account) == 2
    assert client.get(
        "/admin/transactions", params={"account_id": bystander["id"]}
    ).json() == []


def test_purge_keeps_recent_records(client: TestClient) -> None:
    sender = _create(client, "Heidi")
    receiver = _create(client, "Ivan")
    client.post(
        "/transfers",
        json={"sender_id": sender["id"], "receiver": receiver["id"], "amount": 10},
        headers={"Idempotency-Key": str(uuid.uuid4())},
    )

    response = client.post("/admin/maintenance/purge-idempotency")

    assert response.status_code == 200
    assert response.json() == {"purged": 0}


def test_admin_token_is_enforced_when_configured(client: TestClient) -> None:
    app.dependency_overrides[get_settings] = lambda: Settings(admin_token="s3cret")

    assert client.get("/admin/accounts").status_code == 403
    assert client.get("/admin/accounts", headers={"X-Admin-Token": "wrong"}).status_code == 403
    assert client.get("/admin/accounts", headers={"X-Admin-Token": "s3cret"}).status_code == 200


def test_stats_totals(client: TestClient) -> None:
    empty = client.get("/admin/stats").json()
    assert empty["total_accounts"] == 0
    assert empty["total_balance"] == 0
    assert empty["transactions_by_status"] == {}

    sender = _create(client, "Heidi")
    receiver = _create(client, "Ivan")
    _create(client, "Judy")
    client.patch(f"/admin/accounts/{receiver['id']}/block", json={"blocked": True})

    body = {"sender_id": sender["id"], "receiver": receiver["id"], "amount": 300}
    client.post("/transfers", json=body, headers={"Idempotency-Key": str(uuid.uuid4())})
    too_much = {**body, "amount": sender["balance"] * 10}
    client.post("/transfers", json=too_much, headers={"Idempotency-Key": str(uuid.uuid4())})

    response = client.get("/admin/stats")

    assert response.status_code == 200
    stats = response.json()
    initial = get_settings().initial_balance
    assert stats["total_accounts"] == 3
    assert stats["blocked_accounts"] == 1
    # transfers move money between accounts; the total never changes
    assert stats["total_balance"] == 3 * initial
    assert stats["total_balance_display"] == f"{3 * initial / 100:.2f}"
    assert stats["total_transactions"] == 2
    assert stats["transactions_by_status"] == {"completed": 1, "failed": 1}


def test_admin_lists_reject_out_of_range_paging(client: TestClient) -> None:
    assert client.get("/admin/accounts", params={"limit": 0}).status_code == 422
    assert client.get("/admin/transactions", params={"limit": 201}).status_code == 422
    assert client.get("/admin/accounts", params={"offset": -1}).status_code == 422
