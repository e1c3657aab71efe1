import uuid

import pytest
from fido2.utils import websafe_decode
from httpx import AsyncClient

USERS = "/api/v1/users"
WEBAUTHN = "/api/v1/webauthn"


# Helper function to sign up a user and get a bearer header
async def sign_up_and_get_headers(client: AsyncClient, attestation_for, name: str, credential_id: bytes) -> (dict, dict):
    await client.post(
        f"{WEBAUTHN}/signup-start",
        json={"display_name": name, "first_name": name.title(), "last_name": "Tester"},
    )
    response = await client.post(f"{WEBAUTHN}/signup-finish", json=attestation_for(credential_id))
    assert response.status_code == 200
    session = response.json()
    # Keep users apart; requests authenticate with the bearer token only
    client.cookies.clear()
    return session, {"Authorization": f"Bearer {session['access_token']}"}


@pytest.mark.asyncio
async def test_create_user_without_credential(async_client: AsyncClient):
    # Arrange
    user_data = {"display_name": "carol", "first_name": "Carol", "last_name": "Danvers"}

    # Act
    response = await async_client.post(USERS, json=user_data)

    # Assert
    assert response.status_code == 201
    data = response.json()
    assert data["display_name"] == "carol"
    assert len(websafe_decode(data["user_handle"])) == 64
    assert "id" in data


@pytest.mark.asyncio
async def test_create_user_validates_names(async_client: AsyncClient):
    too_long = {"display_name": "x" * 256, "first_name": "Carol", "last_name": "Danvers"}
    missing = {"display_name": "carol", "first_name": "Carol"}

    assert (await async_client.post(USERS, json=too_long)).status_code == 422
    assert (await async_client.post(USERS, json=missing)).status_code == 422


@pytest.mark.asyncio
async def test_read_me_requires_session(async_client: AsyncClient):
    response = await async_client.get(f"{USERS}/me")

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_read_me_with_bearer_token(async_client: AsyncClient, attestation_for):
    session, headers = await sign_up_and_get_headers(async_client, attestation_for, "alice", b"A1")

    response = await async_client.get(f"{USERS}/me", headers=headers)

    assert response.status_code == 200
    assert response.json()["id"] == session["user_id"]
    assert response.json()["first_name"] == "Alice"


@pytest.mark.asyncio
async def test_invalid_token_is_rejected(async_client: AsyncClient):
    response = await async_client.get(f"{USERS}/me", headers={"Authorization": "Bearer not-a-token"})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_delete_credential_of_other_user_looks_missing(async_client: AsyncClient, attestation_for):
    # Arrange
    alice, alice_headers = await sign_up_and_get_headers(async_client, attestation_for, "alice", b"A1")
    _, bob_headers = await sign_up_and_get_headers(async_client, attestation_for, "bob", b"B1")

    # Act
    foreign = await async_client.delete(
        f"{USERS}/me/credentials/{alice['credential_id']}", headers=bob_headers
    )
    missing = await async_client.delete(f"{USERS}/me/credentials/{uuid.uuid4()}", headers=bob_headers)

    # Assert
    assert foreign.status_code == missing.status_code == 404
    assert foreign.json() == missing.json()
    remaining = await async_client.get(f"{USERS}/me/credentials", headers=alice_headers)
    assert [c["id"] for c in remaining.json()] == [alice["credential_id"]]


@pytest.mark.asyncio
async def test_delete_own_credential(async_client: AsyncClient, attestation_for):
    session, headers = await sign_up_and_get_headers(async_client, attestation_for, "alice", b"A1")

    response = await async_client.delete(
        f"{USERS}/me/credentials/{session['credential_id']}", headers=headers
    )

    assert response.status_code == 204
    remaining = await async_client.get(f"{USERS}/me/credentials", headers=headers)
    assert remaining.json() == []
    current = await async_client.get(f"{USERS}/me/credentials/current", headers=headers)
    assert current.status_code == 404


@pytest.mark.asyncio
async def test_read_user_is_limited_to_self(async_client: AsyncClient, attestation_for):
    alice, alice_headers = await sign_up_and_get_headers(async_client, attestation_for, "alice", b"A1")
    bob, _ = await sign_up_and_get_headers(async_client, attestation_for, "bob", b"B1")

    own = await async_client.get(f"{USERS}/{alice['user_id']}", headers=alice_headers)
    other = await async_client.get(f"{USERS}/{bob['user_id']}", headers=alice_headers)

    assert own.status_code == 200
    assert other.status_code == 403


@pytest.mark.asyncio
async def test_update_user(async_client: AsyncClient, attestation_for):
    alice, alice_headers = await sign_up_and_get_headers(async_client, attestation_for, "alice", b"A1")
    bob, _ = await sign_up_and_get_headers(async_client, attestation_for, "bob", b"B1")
    update_data = {"display_name": "ally", "first_name": "Alicia", "last_name": "Liddell"}

    own = await async_client.put(f"{USERS}/{alice['user_id']}", json=update_data, headers=alice_headers)
    other = await async_client.put(f"{USERS}/{bob['user_id']}", json=update_data, headers=alice_headers)

    assert own.status_code == 200
    assert own.json()["display_name"] == "ally"
    assert own.json()["first_name"] == "Alicia"
    assert other.status_code == 403


@pytest.mark.asyncio
async def test_health_and_security_headers(async_client: AsyncClient):
    response = await async_client.get("/health/")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["challenge_backend"] == "memory"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert "X-Request-ID" in response.headers


@pytest.mark.asyncio
async def test_request_id_is_propagated(async_client: AsyncClient):
    supplied = await async_client.get("/health/", headers={"X-Request-ID": "trace-12345678"})
    garbage = await async_client.get("/health/", headers={"X-Request-ID": "bad id!"})

    assert supplied.headers["X-Request-ID"] == "trace-12345678"
    assert garbage.headers["X-Request-ID"] != "bad id!"
