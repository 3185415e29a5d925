import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.core.models import Center, LearnerStaff
from helpers import auth_headers


def _staff(**overrides) -> dict:
    payload = {
        "name": "Ada",
        "surname": "Lovelace",
        "email": "ada@example.com",
        "password": "Password1",
        "role": "ASSESSOR",
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
async def test_center_admin_creates_staff_in_own_center(client: AsyncClient, center_admin: User) -> None:
    response = await client.post("/api/v1/users", json=_staff(role="iqa"), headers=auth_headers(center_admin))
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["role"] == "IQA"
    assert body["center_id"] == center_admin.center_id
    assert body["status"] == "ACTIVE"
    assert "password" not in body and "password_hash" not in body

    response = await client.post(
        "/api/v1/auth/login", json={"email": "ada@example.com", "password": "Password1"}
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_create_staff_rejects_used_email(client: AsyncClient, center_admin: User, assessor: User) -> None:
    response = await client.post(
        "/api/v1/users",
        json=_staff(email="ASSESSOR.Assessor@example.com"),
        headers=auth_headers(center_admin),
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_role_rules_for_creating_staff(
    client: AsyncClient, admin: User, center_admin: User, assessor: User, center: Center
) -> None:
    response = await client.post(
        "/api/v1/users", json=_staff(role="CENTER_ADMIN"), headers=auth_headers(center_admin)
    )
    assert response.status_code == 403
    response = await client.post("/api/v1/users", json=_staff(role="LEARNER"), headers=auth_headers(center_admin))
    assert response.status_code == 422
    response = await client.post("/api/v1/users", json=_staff(), headers=auth_headers(assessor))
    assert response.status_code == 403

    response = await client.post("/api/v1/users", json=_staff(role="CENTER_ADMIN"), headers=auth_headers(admin))
    assert response.status_code == 400
    response = await client.post(
        "/api/v1/users", json=_staff(role="CENTER_ADMIN", center_id=center.id), headers=auth_headers(admin)
    )
    assert response.status_code == 201, response.text
    assert response.json()["center_id"] == center.id


@pytest.mark.asyncio
async def test_list_staff_is_scoped_to_center(
    client: AsyncClient, db_session: AsyncSession, center_admin: User, assessor: User, iqa: User, learner: User
) -> None:
    elsewhere = Center(center_name="South Campus")
    db_session.add(elsewhere)
    await db_session.flush()
    db_session.add(
        User(
            center_id=elsewhere.id,
            name="Far",
            surname="Away",
            email="far@example.com",
            password_hash="x",
            role="ASSESSOR",
            status="ACTIVE",
        )
    )
    await db_session.commit()

    response = await client.get("/api/v1/users", headers=auth_headers(center_admin))
    assert response.status_code == 200
    names = [u["name"] for u in response.json()["items"]]
    assert names == ["Assessor", "Centre", "Iqa"]

    response = await client.get("/api/v1/users", params={"role": "iqa"}, headers=auth_headers(center_admin))
    assert [u["id"] for u in response.json()["items"]] == [iqa.id]

    response = await client.get("/api/v1/users", params={"search": "assessor u"}, headers=auth_headers(center_admin))
    assert [u["id"] for u in response.json()["items"]] == [assessor.id]

    response = await client.get("/api/v1/users", headers=auth_headers(learner))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_get_and_update_staff(
    client: AsyncClient, center_admin: User, assessor: User, iqa: User, learner: User
) -> None:
    response = await client.get(f"/api/v1/users/{assessor.id}", headers=auth_headers(iqa))
    assert response.status_code == 200
    assert response.json()["email"] == assessor.email

    # Learners are managed through the learners endpoints
    response = await client.get(f"/api/v1/users/{learner.id}", headers=auth_headers(center_admin))
    assert response.status_code == 404

    response = await client.put(
        f"/api/v1/users/{assessor.id}",
        json={"surname": "Renamed", "status": "INACTIVE"},
        headers=auth_headers(center_admin),
    )
    assert response.status_code == 200, response.text
    assert response.json()["surname"] == "Renamed"
    assert response.json()["status"] == "INACTIVE"

    response = await client.put(
        f"/api/v1/users/{assessor.id}", json={"email": iqa.email.upper()}, headers=auth_headers(center_admin)
    )
    assert response.status_code == 409

    response = await client.put("/api/v1/users/404", json={"surname": "x"}, headers=auth_headers(center_admin))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_delete_staff_removes_learner_links(
    client: AsyncClient, db_session: AsyncSession, center_admin: User, assessor: User, learner: User
) -> None:
    db_session.add(LearnerStaff(learner_id=learner.id, staff_id=assessor.id, staff_role="ASSESSOR"))
    await db_session.commit()

    response = await client.delete(f"/api/v1/users/{center_admin.id}", headers=auth_headers(center_admin))
    assert response.status_code == 400

    response = await client.delete(f"/api/v1/users/{assessor.id}", headers=auth_headers(center_admin))
    assert response.status_code == 204
    links = await db_session.execute(select(LearnerStaff.id).where(LearnerStaff.staff_id == assessor.id))
    assert links.first() is None
    response = await client.get(f"/api/v1/users/{assessor.id}", headers=auth_headers(center_admin))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_profile_and_password_change(client: AsyncClient, learner: User) -> None:
    response = await client.get("/api/v1/users/me", headers=auth_headers(learner))
    assert response.status_code == 200
    assert response.json()["id"] == learner.id

    response = await client.put(
        "/api/v1/users/me", json={"phone_number": "07700 900123"}, headers=auth_headers(learner)
    )
    assert response.json()["phone_number"] == "07700 900123"

    response = await client.put(
        "/api/v1/users/me/password",
        json={"current_password": "wrong", "new_password": "NewSecret1"},
        headers=auth_headers(learner),
    )
    assert response.status_code == 400

    response = await client.put(
        "/api/v1/users/me/password",
        json={"current_password": "Secret123", "new_password": "NewSecret1"},
        headers=auth_headers(learner),
    )
    assert response.status_code == 200
    response = await client.post(
        "/api/v1/auth/login", json={"email": learner.email, "password": "NewSecret1"}
    )
    assert response.status_code == 200
