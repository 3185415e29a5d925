import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.qualifications.marks import (
    MarkValue,
    resolve_outcome_mark,
    resolve_subpoint_mark,
    resolve_subpoint_marks,
)
from app.api.v1.qualifications.tree import build_qualification_tree
from app.auth.models import User
from app.core.models import (
    Assessment,
    AssessmentMark,
    Category,
    Center,
    MainOutcome,
    OutcomeSubpoint,
    Qualification,
    SubOutcome,
    Unit,
)
from helpers import auth_headers, build_workbook, upload


@pytest.fixture()
async def catalogue(db_session: AsyncSession) -> dict:
    category = Category(category_name="Core", is_mandatory=True)
    qualification = Qualification(name="Care", qualification_no="Q/1")
    db_session.add_all([category, qualification])
    await db_session.flush()
    unit = Unit(
        qualification_id=qualification.id,
        unit_title="Safeguarding",
        unit_number="1",
        unit_ref_no="U/1",
        category_id=category.id,
    )
    db_session.add(unit)
    await db_session.flush()
    main = MainOutcome(unit_id=unit.id, qualification_id=qualification.id, main_number="1", description="Main")
    db_session.add(main)
    await db_session.flush()
    sub = SubOutcome(
        unit_id=unit.id,
        qualification_id=qualification.id,
        main_outcome_id=main.id,
        outcome_number="1.1",
        description="Sub",
        marks=10,
    )
    db_session.add(sub)
    await db_session.flush()
    point = OutcomeSubpoint(outcome_id=sub.id, point_text="Point", marks=5)
    other_point = OutcomeSubpoint(outcome_id=sub.id, point_text="Other point")
    db_session.add_all([point, other_point])
    await db_session.commit()
    return {
        "qualification": qualification,
        "unit": unit,
        "sub": sub,
        "point": point,
        "other_point": other_point,
    }


def _mark(learner: User, catalogue: dict, marks: float, max_marks=None, **target) -> AssessmentMark:
    if not target:
        target = {"subpoint_id": catalogue["point"].id}
    return AssessmentMark(
        learner_id=learner.id,
        qualification_id=catalogue["qualification"].id,
        unit_id=catalogue["unit"].id,
        marks=marks,
        max_marks=max_marks,
        **target,
    )


@pytest.mark.parametrize("order", [(2, 4), (4, 2)])
@pytest.mark.asyncio
async def test_best_attempt_wins_in_any_insert_order(
    db_session: AsyncSession, learner: User, catalogue: dict, order
) -> None:
    for value in order:
        db_session.add(_mark(learner, catalogue, value, max_marks=5))
        await db_session.flush()
    await db_session.commit()

    mark = await resolve_subpoint_mark(
        db_session, catalogue["point"].id, learner.id, catalogue["qualification"].id
    )
    assert mark == MarkValue(marks=4.0, max_marks=5.0)


@pytest.mark.asyncio
async def test_tie_resolved_by_earliest_row(db_session: AsyncSession, learner: User, catalogue: dict) -> None:
    db_session.add(_mark(learner, catalogue, 3, max_marks=5))
    await db_session.flush()
    db_session.add(_mark(learner, catalogue, 3, max_marks=6))
    await db_session.commit()

    mark = await resolve_subpoint_mark(
        db_session, catalogue["point"].id, learner.id, catalogue["qualification"].id
    )
    assert mark.max_marks == 5.0


@pytest.mark.asyncio
async def test_unmarked_subpoint_is_absent(db_session: AsyncSession, learner: User, catalogue: dict) -> None:
    db_session.add(_mark(learner, catalogue, 1))
    await db_session.commit()

    marks = await resolve_subpoint_marks(
        db_session,
        [catalogue["point"].id, catalogue["other_point"].id],
        learner.id,
        catalogue["qualification"].id,
    )
    assert set(marks) == {catalogue["point"].id}
    assert await resolve_subpoint_marks(db_session, [], learner.id, catalogue["qualification"].id) == {}


@pytest.mark.asyncio
async def test_outcome_and_subpoint_marks_do_not_mix(
    db_session: AsyncSession, learner: User, catalogue: dict
) -> None:
    db_session.add(_mark(learner, catalogue, 2, max_marks=5))
    db_session.add(_mark(learner, catalogue, 7, max_marks=10, sub_outcome_id=catalogue["sub"].id))
    await db_session.commit()

    qualification_id = catalogue["qualification"].id
    outcome = await resolve_outcome_mark(db_session, catalogue["sub"].id, learner.id, qualification_id)
    point = await resolve_subpoint_mark(db_session, catalogue["point"].id, learner.id, qualification_id)
    assert outcome.marks == 7.0
    assert point.marks == 2.0


@pytest.mark.asyncio
async def test_marks_scoped_to_assessment(db_session: AsyncSession, learner: User, catalogue: dict, center) -> None:
    assessment = Assessment(
        center_id=center.id, qualification_id=catalogue["qualification"].id, title="Observation"
    )
    db_session.add(assessment)
    await db_session.flush()
    db_session.add(_mark(learner, catalogue, 5))
    db_session.add(_mark(learner, catalogue, 1, assessment_id=assessment.id, subpoint_id=catalogue["point"].id))
    await db_session.commit()

    qualification_id = catalogue["qualification"].id
    overall = await resolve_subpoint_mark(db_session, catalogue["point"].id, learner.id, qualification_id)
    scoped = await resolve_subpoint_mark(
        db_session, catalogue["point"].id, learner.id, qualification_id, assessment_id=assessment.id
    )
    assert overall.marks == 5.0
    assert scoped.marks == 1.0


@pytest.mark.asyncio
async def test_marks_of_other_learners_are_ignored(
    db_session: AsyncSession, learner: User, make_user, catalogue: dict
) -> None:
    other = await make_user("LEARNER", name="Other")
    db_session.add(_mark(other, catalogue, 5))
    await db_session.commit()

    assert (
        await resolve_subpoint_mark(db_session, catalogue["point"].id, learner.id, catalogue["qualification"].id)
        is None
    )


@pytest.mark.asyncio
async def test_tree_carries_best_marks(db_session: AsyncSession, learner: User, catalogue: dict) -> None:
    db_session.add(_mark(learner, catalogue, 2.5, max_marks=5))
    db_session.add(_mark(learner, catalogue, 4, max_marks=5))
    db_session.add(_mark(learner, catalogue, 6, sub_outcome_id=catalogue["sub"].id))
    await db_session.commit()

    tree = await build_qualification_tree(db_session, catalogue["qualification"].id, learner.id)
    sub = tree.units[0].main_outcomes[0].sub_outcomes[0]
    assert sub.outcome_marks == "6"
    assert sub.max_outcome_marks == "10"
    points = {p.point_text: p for p in sub.sub_points}
    assert (points["Point"].mark, points["Point"].max_marks) == ("4", "5")
    assert (points["Other point"].mark, points["Other point"].max_marks) == ("0", "0")


# ----- API -----


async def _enrolled_qualification(client: AsyncClient, admin: User, center_admin: User, learner: User) -> int:
    response = await client.post("/api/v1/qualifications", files=upload(build_workbook()), headers=auth_headers(admin))
    qualification_id = response.json()["qualification"]["id"]
    await client.put(
        f"/api/v1/learners/{learner.id}/qualifications",
        json={"qualification_ids": [qualification_id]},
        headers=auth_headers(center_admin),
    )
    return qualification_id


async def _first_point(db: AsyncSession) -> OutcomeSubpoint:
    result = await db.execute(select(OutcomeSubpoint).order_by(OutcomeSubpoint.id))
    return result.scalars().first()


@pytest.mark.asyncio
async def test_record_mark_counts_attempts_and_keeps_best(
    client: AsyncClient,
    db_session: AsyncSession,
    admin: User,
    center_admin: User,
    assessor: User,
    learner: User,
) -> None:
    qualification_id = await _enrolled_qualification(client, admin, center_admin, learner)
    point = await _first_point(db_session)
    unit_id = (await db_session.execute(select(Unit.id))).scalar_one()

    attempts = []
    for value in (4, 2):
        response = await client.post(
            "/api/v1/assessments/marks",
            json={
                "learner_id": learner.id,
                "qualification_id": qualification_id,
                "unit_id": unit_id,
                "subpoint_id": point.id,
                "marks": value,
                "max_marks": 5,
            },
            headers=auth_headers(assessor),
        )
        assert response.status_code == 201, response.text
        attempts.append(response.json()["attempt"])
    assert attempts == [1, 2]

    response = await client.get(f"/api/v1/qualifications/{qualification_id}", headers=auth_headers(learner))
    sub_points = response.json()["units"][0]["main_outcomes"][0]["sub_outcomes"]
    marked = [p for s in sub_points for p in s["sub_points"] if p["id"] == point.id]
    assert marked[0]["mark"] == "4"
    assert marked[0]["max_marks"] == "5"


@pytest.mark.asyncio
async def test_record_mark_requires_exactly_one_target(
    client: AsyncClient, assessor: User, learner: User
) -> None:
    base = {"learner_id": learner.id, "qualification_id": 1, "unit_id": 1, "marks": 1}
    for extra in ({}, {"subpoint_id": 1, "sub_outcome_id": 1}):
        response = await client.post(
            "/api/v1/assessments/marks", json={**base, **extra}, headers=auth_headers(assessor)
        )
        assert response.status_code == 422


@pytest.mark.asyncio
async def test_record_mark_above_maximum_rejected(client: AsyncClient, assessor: User, learner: User) -> None:
    response = await client.post(
        "/api/v1/assessments/marks",
        json={
            "learner_id": learner.id,
            "qualification_id": 1,
            "unit_id": 1,
            "subpoint_id": 1,
            "marks": 6,
            "max_marks": 5,
        },
        headers=auth_headers(assessor),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_record_mark_requires_enrollment(
    client: AsyncClient, db_session: AsyncSession, admin: User, assessor: User, learner: User
) -> None:
    response = await client.post("/api/v1/qualifications", files=upload(build_workbook()), headers=auth_headers(admin))
    qualification_id = response.json()["qualification"]["id"]
    point = await _first_point(db_session)
    unit_id = (await db_session.execute(select(Unit.id))).scalar_one()

    response = await client.post(
        "/api/v1/assessments/marks",
        json={
            "learner_id": learner.id,
            "qualification_id": qualification_id,
            "unit_id": unit_id,
            "subpoint_id": point.id,
            "marks": 1,
        },
        headers=auth_headers(assessor),
    )
    assert response.status_code == 400
    assert "not enrolled" in response.json()["detail"]


@pytest.mark.asyncio
async def test_learner_cannot_record_marks(client: AsyncClient, learner: User) -> None:
    response = await client.post(
        "/api/v1/assessments/marks",
        json={"learner_id": learner.id, "qualification_id": 1, "unit_id": 1, "subpoint_id": 1, "marks": 1},
        headers=auth_headers(learner),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_create_and_get_assessment(
    client: AsyncClient, db_session: AsyncSession, admin: User, assessor: User, iqa: User
) -> None:
    response = await client.post("/api/v1/qualifications", files=upload(build_workbook()), headers=auth_headers(admin))
    qualification_id = response.json()["qualification"]["id"]
    unit_id = (await db_session.execute(select(Unit.id))).scalar_one()

    response = await client.post(
        "/api/v1/assessments",
        json={"qualification_id": qualification_id, "title": " Observation ", "unit_ids": [unit_id]},
        headers=auth_headers(assessor),
    )
    assert response.status_code == 201, response.text
    created = response.json()
    assert created["title"] == "Observation"
    assert created["unit_ids"] == [unit_id]
    assert created["center_id"] == assessor.center_id

    response = await client.get(f"/api/v1/assessments/{created['id']}", headers=auth_headers(iqa))
    assert response.status_code == 200
    assert response.json()["id"] == created["id"]

    response = await client.get("/api/v1/assessments/9999", headers=auth_headers(iqa))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_create_assessment_rejects_foreign_units(
    client: AsyncClient, admin: User, assessor: User
) -> None:
    response = await client.post("/api/v1/qualifications", files=upload(build_workbook()), headers=auth_headers(admin))
    qualification_id = response.json()["qualification"]["id"]

    response = await client.post(
        "/api/v1/assessments",
        json={"qualification_id": qualification_id, "title": "Observation", "unit_ids": [12345]},
        headers=auth_headers(assessor),
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_admin_must_name_a_center(client: AsyncClient, admin: User) -> None:
    response = await client.post(
        "/api/v1/assessments",
        json={"qualification_id": 1, "title": "Observation"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "center_id is required"


@pytest.mark.asyncio
async def test_tree_only_accepts_own_center_assessments(
    client: AsyncClient, db_session: AsyncSession, admin: User, assessor: User, center
) -> None:
    response = await client.post("/api/v1/qualifications", files=upload(build_workbook()), headers=auth_headers(admin))
    qualification_id = response.json()["qualification"]["id"]
    elsewhere = Center(center_name="South Campus")
    db_session.add(elsewhere)
    await db_session.flush()
    own = Assessment(center_id=center.id, qualification_id=qualification_id, title="Own", assessment_status=1)
    foreign = Assessment(center_id=elsewhere.id, qualification_id=qualification_id, title="Foreign", assessment_status=1)
    db_session.add_all([own, foreign])
    await db_session.commit()
    url = f"/api/v1/qualifications/{qualification_id}"

    response = await client.get(url, params={"assessment_id": own.id}, headers=auth_headers(assessor))
    assert response.status_code == 200, response.text

    response = await client.get(url, params={"assessment_id": foreign.id}, headers=auth_headers(assessor))
    assert response.status_code == 404

    response = await client.get(
        f"/api/v1/qualifications/{qualification_id + 1}",
        params={"assessment_id": own.id},
        headers=auth_headers(assessor),
    )
    assert response.status_code == 404

    # Platform admins see every center's assessments
    response = await client.get(url, params={"assessment_id": foreign.id}, headers=auth_headers(admin))
    assert response.status_code == 200
