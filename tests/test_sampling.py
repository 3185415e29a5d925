import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.core.enums import SamplingReferenceType
from app.core.models import SamplingUnit, Unit, UserUnit
from helpers import auth_headers, build_workbook, default_unit, upload


@pytest.fixture()
async def enrolled(client: AsyncClient, db_session: AsyncSession, admin: User, center_admin: User, learner: User):
    units = [
        default_unit(),
        default_unit(number="2", ref="OPT/1", category="Electives", mandatory="No", sheet="Elective"),
    ]
    response = await client.post(
        "/api/v1/qualifications", files=upload(build_workbook(units=units)), headers=auth_headers(admin)
    )
    qualification_id = response.json()["qualification"]["id"]
    await client.put(
        f"/api/v1/learners/{learner.id}/qualifications",
        json={"qualification_ids": [qualification_id]},
        headers=auth_headers(center_admin),
    )
    result = await db_session.execute(select(Unit.unit_ref_no, Unit.id))
    return {"qualification_id": qualification_id, "units": dict(result.all())}


async def _sampling_flags(db: AsyncSession, learner: User) -> dict:
    result = await db.execute(
        select(Unit.unit_ref_no, UserUnit.is_sampling, UserUnit.iqa_id, UserUnit.reference_type)
        .join(UserUnit, UserUnit.unit_id == Unit.id)
        .where(UserUnit.user_id == learner.id)
    )
    return {ref: (is_sampling, iqa_id, reference_type) for ref, is_sampling, iqa_id, reference_type in result.all()}


async def _create(client: AsyncClient, iqa: User, payload: dict):
    return await client.post("/api/v1/sampling", json=payload, headers=auth_headers(iqa))


@pytest.mark.asyncio
async def test_unit_sampling_flags_learner_units(
    client: AsyncClient, db_session: AsyncSession, iqa: User, learner: User, enrolled: dict
) -> None:
    response = await _create(
        client,
        iqa,
        {
            "learner_id": learner.id,
            "qualification_id": enrolled["qualification_id"],
            "unit_ids": [enrolled["units"]["H/601/8574"]],
            "date": "2024-03-01",
            "iqa_notes": "Portfolio reviewed",
        },
    )
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["reference_type"] == SamplingReferenceType.UNIT
    assert body["unit_ids"] == [enrolled["units"]["H/601/8574"]]
    assert body["date"] == "2024-03-01"
    assert body["created_by"] == iqa.id

    flags = await _sampling_flags(db_session, learner)
    assert flags["H/601/8574"] == (True, iqa.id, SamplingReferenceType.UNIT)
    assert flags["OPT/1"] == (False, None, None)


@pytest.mark.asyncio
async def test_assessment_without_units_samples_whole_qualification(
    client: AsyncClient, db_session: AsyncSession, assessor: User, iqa: User, learner: User, enrolled: dict
) -> None:
    response = await client.post(
        "/api/v1/assessments",
        json={"qualification_id": enrolled["qualification_id"], "title": "Final observation"},
        headers=auth_headers(assessor),
    )
    assessment_id = response.json()["id"]

    response = await _create(
        client,
        iqa,
        {"learner_id": learner.id, "qualification_id": enrolled["qualification_id"], "assessment_ids": [assessment_id]},
    )
    assert response.status_code == 201, response.text
    assert response.json()["assessment_ids"] == [assessment_id]
    assert response.json()["reference_type"] == SamplingReferenceType.ASSESSMENT

    flags = await _sampling_flags(db_session, learner)
    assert {ref: flag[0] for ref, flag in flags.items()} == {"H/601/8574": True, "OPT/1": True}


@pytest.mark.asyncio
async def test_sampling_needs_exactly_one_reference_kind(
    client: AsyncClient, iqa: User, learner: User, enrolled: dict
) -> None:
    base = {"learner_id": learner.id, "qualification_id": enrolled["qualification_id"]}
    response = await _create(client, iqa, base)
    assert response.status_code == 422
    response = await _create(client, iqa, {**base, "unit_ids": [1], "assessment_ids": [1]})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_sampling_rejects_units_of_other_qualifications(
    client: AsyncClient, iqa: User, learner: User, enrolled: dict
) -> None:
    response = await _create(
        client,
        iqa,
        {"learner_id": learner.id, "qualification_id": enrolled["qualification_id"], "unit_ids": [9999]},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_only_iqa_can_sample(client: AsyncClient, assessor: User, learner: User, enrolled: dict) -> None:
    response = await _create(
        client,
        assessor,
        {"learner_id": learner.id, "qualification_id": enrolled["qualification_id"], "unit_ids": [1]},
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_sampling_matrix(
    client: AsyncClient, iqa: User, center_admin: User, learner: User, make_user, enrolled: dict
) -> None:
    other = await make_user("LEARNER", name="Bob")
    await client.put(
        f"/api/v1/learners/{other.id}/qualifications",
        json={"qualification_ids": [enrolled["qualification_id"]]},
        headers=auth_headers(center_admin),
    )
    await _create(
        client,
        iqa,
        {
            "learner_id": learner.id,
            "qualification_id": enrolled["qualification_id"],
            "unit_ids": [enrolled["units"]["OPT/1"]],
        },
    )

    response = await client.get(
        f"/api/v1/sampling/matrix/{enrolled['qualification_id']}", headers=auth_headers(center_admin)
    )
    assert response.status_code == 200, response.text
    matrix = response.json()
    assert [row["learner_name"] for row in matrix] == ["Bob User", "Lena User"]

    lena_units = {u["id"]: u for u in matrix[1]["qualifications"][0]["units"]}
    sampled = lena_units[enrolled["units"]["OPT/1"]]
    assert sampled["is_sampled"] is True
    assert sampled["is_assigned"] is False
    assert sampled["iqa"] == {"id": iqa.id, "name": "Iqa", "surname": "User"}
    assert sampled["sampled_date"] is not None
    assert lena_units[enrolled["units"]["H/601/8574"]]["is_sampled"] is False
    assert all(not u["is_sampled"] for u in matrix[0]["qualifications"][0]["units"])

    response = await client.get(
        f"/api/v1/sampling/matrix/{enrolled['qualification_id']}",
        params={"learner_name_search": "len"},
        headers=auth_headers(center_admin),
    )
    assert [row["learner_id"] for row in response.json()] == [learner.id]


@pytest.mark.asyncio
async def test_matrix_for_unknown_qualification(client: AsyncClient, iqa: User) -> None:
    response = await client.get("/api/v1/sampling/matrix/404", headers=auth_headers(iqa))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_update_get_list_and_delete(
    client: AsyncClient, db_session: AsyncSession, iqa: User, learner: User, enrolled: dict
) -> None:
    response = await _create(
        client,
        iqa,
        {
            "learner_id": learner.id,
            "qualification_id": enrolled["qualification_id"],
            "unit_ids": [enrolled["units"]["H/601/8574"]],
        },
    )
    sampling_id = response.json()["id"]

    response = await client.put(
        f"/api/v1/sampling/{sampling_id}",
        json={"iqa_notes": "Follow up needed", "is_accept_sampling": "No", "unit_ids": [enrolled["units"]["OPT/1"]]},
        headers=auth_headers(iqa),
    )
    assert response.status_code == 200, response.text
    assert response.json()["iqa_notes"] == "Follow up needed"
    assert response.json()["unit_ids"] == [enrolled["units"]["OPT/1"]]

    response = await client.get(f"/api/v1/sampling/{sampling_id}", headers=auth_headers(iqa))
    assert response.json()["is_accept_sampling"] == "No"

    response = await client.get(
        "/api/v1/sampling", params={"learner_id": learner.id}, headers=auth_headers(iqa)
    )
    assert response.json()["total"] == 1
    assert response.json()["items"][0]["id"] == sampling_id

    response = await client.delete(f"/api/v1/sampling/{sampling_id}", headers=auth_headers(iqa))
    assert response.status_code == 204
    response = await client.get(f"/api/v1/sampling/{sampling_id}", headers=auth_headers(iqa))
    assert response.status_code == 404
    links = await db_session.execute(select(SamplingUnit.id).where(SamplingUnit.sampling_id == sampling_id))
    assert links.first() is None


@pytest.mark.asyncio
async def test_update_unknown_sampling(client: AsyncClient, iqa: User) -> None:
    response = await client.put("/api/v1/sampling/404", json={"iqa_notes": "x"}, headers=auth_headers(iqa))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_update_cannot_drop_every_reference(
    client: AsyncClient, assessor: User, iqa: User, learner: User, enrolled: dict
) -> None:
    response = await _create(
        client,
        iqa,
        {
            "learner_id": learner.id,
            "qualification_id": enrolled["qualification_id"],
            "unit_ids": [enrolled["units"]["H/601/8574"]],
        },
    )
    sampling_id = response.json()["id"]
    url = f"/api/v1/sampling/{sampling_id}"

    response = await client.put(url, json={"unit_ids": []}, headers=auth_headers(iqa))
    assert response.status_code == 400
    response = await client.get(url, headers=auth_headers(iqa))
    assert response.json()["unit_ids"] == [enrolled["units"]["H/601/8574"]]

    # Switching to assessments replaces the unit links and the reference type
    response = await client.post(
        "/api/v1/assessments",
        json={"qualification_id": enrolled["qualification_id"], "title": "Observation"},
        headers=auth_headers(assessor),
    )
    assessment_id = response.json()["id"]
    response = await client.put(url, json={"assessment_ids": [assessment_id]}, headers=auth_headers(iqa))
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["unit_ids"] == []
    assert body["assessment_ids"] == [assessment_id]
    assert body["reference_type"] == SamplingReferenceType.ASSESSMENT
