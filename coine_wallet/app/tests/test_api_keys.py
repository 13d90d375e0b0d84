import uuid
from datetime import UTC, datetime, timedelta, timezone

from fastapi.testclient import TestClient


def _create(client: TestClient, name: str) -> dict:
    return client.post(
        "/accounts",
        json={"email": f"{name.lower()}@example.com", "owner_name": name},
    ).json()


def _issue(client: TestClient, account_id: str, **overrides) -> dict:
    body = {"name": "integration", "permissions": ["transfer", "balance", "history"]}
    body.update(overrides)
    response = client.post(f"/accounts/{account_id}/api-keys", json=body)
    assert response.status_code == 201
    return response.json()


def test_issued_key_is_shown_once(client: TestClient) -> None:
    account = _create(client, "Alice")
    issued = _issue(client, account["id"])

    assert issued["api_key"].startswith("cw_")
    assert issued["key_prefix"] == issued["api_key"][:10]

    listed = client.get(f"/accounts/{account['id']}/api-keys").json()
    assert len(listed) == 1
    assert "api_key" not in listed[0]


def test_api_key_transfer_balance_and_history(client: TestClient) -> None:
    sender = _create(client, "Bob")
    receiver = _create(client, "Carol")
    headers = {"X-API-Key": _issue(client, sender["id"])["api_key"]}

    transfer = client.post(
        "/v1/transfer",
        json={"receiver": "carol@example.com", "amount": 250},
        headers={**headers, "Idempotency-Key": str(uuid.uuid4())},
    )
    assert transfer.status_code == 200
    assert transfer.json()["sender_balance_after"] == sender["balance"] - 250

    balance = client.get("/v1/balance", headers=headers).json()
    assert balance["balance"] == sender["balance"] - 250
    assert client.get(f"/accounts/{receiver['id']}").json()["balance"] == receiver["balance"] + 250

    history = client.get("/v1/history", headers=headers).json()
    assert [item["amount"] for item in history["items"]] == [250]


def test_missing_or_unknown_key_is_unauthorized(client: TestClient) -> None:
    assert client.get("/v1/balance").status_code == 401
    response = client.get("/v1/balance", headers={"X-API-Key": "cw_nope"})
    assert response.status_code == 401
    assert response.json()["error_code"] == "INVALID_API_KEY"


def test_key_without_permission_is_forbidden(client: TestClient) -> None:
    account = _create(client, "Dave")
    raw = _issue(client, account["id"], permissions=["balance"])["api_key"]

    response = client.post(
        "/v1/transfer",
        json={"receiver": account["id"], "amount": 1},
        headers={"X-API-Key": raw, "Idempotency-Key": str(uuid.uuid4())},
    )

    assert response.status_code == 403
    assert "'transfer' permission" in response.json()["detail"]


def test_revoked_key_is_forbidden(client: TestClient) -> None:
    account = _create(client, "Erin")
    issued = _issue(client, account["id"])

    revoke = client.delete(f"/accounts/{account['id']}/api-keys/{issued['id']}")
    assert revoke.status_code == 200
    assert revoke.json()["active"] is False

    response = client.get("/v1/balance", headers={"X-API-Key": issued["api_key"]})
    assert response.status_code == 403


def test_expired_key_is_forbidden(client: TestClient) -> None:
    account = _create(client, "Frank")
    expired = (datetime.now(UTC) - timedelta(minutes=1)).isoformat()
    raw = _issue(client, account["id"], expires_at=expired)["api_key"]

    response = client.get("/v1/balance", headers={"X-API-Key": raw})

    assert response.status_code == 403
    assert response.json()["detail"] == "This API key has expired"


def test_ip_restricted_key(client: TestClient) -> None:
    account = _create(client, "Grace")
    blocked_raw = _issue(client, account["id"], ip_restrictions=["10.0.0.1"])["api_key"]
    allowed_raw = _issue(client, account["id"], ip_restrictions=["testclient"])["api_key"]

    assert client.get("/v1/balance", headers={"X-API-Key": blocked_raw}).status_code == 403
    assert client.get("/v1/balance", headers={"X-API-Key": allowed_raw}).status_code == 200


def test_key_of_blocked_account_is_forbidden(client: TestClient) -> None:
    account = _create(client, "Heidi")
    raw = _issue(client, account["id"])["api_key"]
    client.patch(f"/admin/accounts/{account['id']}/block", json={"blocked": True})

    response = client.get("/v1/balance", headers={"X-API-Key": raw})

    assert response.status_code == 403


def test_expiry_with_offset_is_enforced_in_utc(client: TestClient) -> None:
    account = _create(client, "Ivan")
    plus_five = timezone(timedelta(hours=5))
    expired = (datetime.now(UTC) - timedelta(hours=1)).astimezone(plus_five).isoformat()
    issued = _issue(client, account["id"], expires_at=expired)

    stored = datetime.fromisoformat(issued["expires_at"])
    assert stored.utcoffset() == timedelta(0)

    response = client.get("/v1/balance", headers={"X-API-Key": issued["api_key"]})
    assert response.status_code == 403
    assert response.json()["detail"] == "This API key has expired"


def test_update_key_reactivates_and_renames(client: TestClient) -> None:
    account = _create(client, "Judy")
    issued = _issue(client, account["id"])
    url = f"/accounts/{account['id']}/api-keys/{issued['id']}"
    headers = {"X-API-Key": issued["api_key"]}
    client.delete(url)
    assert client.get("/v1/balance", headers=headers).status_code == 403

    response = client.patch(url, json={"active": True, "name": "payroll"})

    assert response.status_code == 200
    assert response.json()["active"] is True
    assert response.json()["name"] == "payroll"
    assert response.json()["permissions"] == ["balance", "history", "transfer"]
    assert client.get("/v1/balance", headers=headers).status_code == 200


def test_update_key_narrows_permissions(client: TestClient) -> None:
    account = _create(client, "Ken")
    issued = _issue(client, account["id"])
    headers = {"X-API-Key": issued["api_key"]}

    response = client.patch(
        f"/accounts/{account['id']}/api-keys/{issued['id']}",
        json={"permissions": ["balance"]},
    )
    assert response.status_code == 200
    assert response.json()["permissions"] == ["balance"]

    transfer = client.post(
        "/v1/transfer",
        json={"receiver": account["id"], "amount": 1},
        headers={**headers, "Idempotency-Key": str(uuid.uuid4())},
    )
    assert transfer.status_code == 403
    assert client.get("/v1/balance", headers=headers).status_code == 200


def test_update_key_clears_expiry(client: TestClient) -> None:
    account = _create(client, "Liam")
    expired = (datetime.now(UTC) - timedelta(minutes=1)).isoformat()
    issued = _issue(client, account["id"], expires_at=expired)
    headers = {"X-API-Key": issued["api_key"]}
    assert client.get("/v1/balance", headers=headers).status_code == 403

    response = client.patch(
        f"/accounts/{account['id']}/api-keys/{issued['id']}", json={"expires_at": None}
    )

    assert response.status_code == 200
    assert response.json()["expires_at"] is None
    assert client.get("/v1/balance", headers=headers).status_code == 200


def test_update_key_of_another_account_is_not_found(client: TestClient) -> None:
    owner = _create(client, "Mallory")
    intruder = _create(client, "Niaj")
    issued = _issue(client, owner["id"])

    response = client.patch(
        f"/accounts/{intruder['id']}/api-keys/{issued['id']}", json={"active": False}
    )

    assert response.status_code == 404
    assert response.json()["error_code"] == "API_KEY_NOT_FOUND"
    assert client.get("/v1/balance", headers={"X-API-Key": issued["api_key"]}).status_code == 200


def test_update_key_rejects_empty_permissions(client: TestClient) -> None:
    account = _create(client, "Olivia")
    issued = _issue(client, account["id"])

    response = client.patch(
        f"/accounts/{account['id']}/api-keys/{issued['id']}", json={"permissions": []}
    )

    assert response.status_code == 422


def test_history_rejects_out_of_range_limit(client: TestClient) -> None:
    account = _create(client, "Peggy")
    headers = {"X-API-Key": _issue(client, account["id"])["api_key"]}

    assert client.get("/v1/history", params={"limit": 0}, headers=headers).status_code == 422
    assert client.get("/v1/history", params={"limit": 1}, headers=headers).status_code == 200
