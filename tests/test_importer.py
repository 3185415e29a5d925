"""Unit tests for qualification workbook parsing."""

import pytest

from app.api.v1.qualifications.importer import (
    ImportValidationError,
    clean_point_text,
    parse_qualification_workbook,
)
from helpers import build_workbook, default_unit


def test_clean_point_text_strips_bullets_and_dashes() -> None:
    assert clean_point_text("• Physical") == "Physical"
    assert clean_point_text("  - Identify who to report to") == "Identify who to report to"
    assert clean_point_text(chr(0xF0B7) + "\tSymbol font bullet") == "Symbol font bullet"
    assert clean_point_text("*  _ Mixed") == "Mixed"
    assert clean_point_text("Plain text") == "Plain text"


def test_clean_point_text_empty_input() -> None:
    assert clean_point_text(None) == ""
    assert clean_point_text("") == ""
    assert clean_point_text(" • - ") == ""


def test_parse_header_and_units() -> None:
    parsed = parse_qualification_workbook(build_workbook())
    assert parsed.name == "Level 3 Diploma in Care"
    assert parsed.qualification_no == "603/1234/5"
    assert len(parsed.units) == 1

    unit = parsed.units[0]
    assert unit.unit_ref_no == "H/601/8574"
    assert unit.category == "Core"
    assert unit.is_mandatory is True
    assert [m.number for m in unit.main_outcomes] == ["1", "2"]

    first = unit.main_outcomes[0]
    assert [s.number for s in first.sub_outcomes] == ["1.10", "1.2"]
    assert first.sub_outcomes[0].subpoints == ["Identify who to report to"]
    assert first.sub_outcomes[1].subpoints == ["Physical", "Emotional"]
    assert unit.orphan_sub_outcomes == []


def test_main_outcome_code_with_trailing_zeros() -> None:
    unit = default_unit(outcomes=[("3.0", "Main with decimal"), ("3.1", "Sub"), (None, "Point")])
    parsed = parse_qualification_workbook(build_workbook(units=[unit]))
    mains = parsed.units[0].main_outcomes
    assert [m.number for m in mains] == ["3.0"]
    assert mains[0].sub_outcomes[0].subpoints == ["Point"]


def test_sub_outcome_before_any_main_outcome_is_kept_as_orphan() -> None:
    unit = default_unit(outcomes=[("1.1", "Orphan"), (None, "Orphan point"), ("2", "Main"), ("2.1", "Sub")])
    parsed = parse_qualification_workbook(build_workbook(units=[unit]))
    parsed_unit = parsed.units[0]
    assert [s.number for s in parsed_unit.orphan_sub_outcomes] == ["1.1"]
    assert parsed_unit.orphan_sub_outcomes[0].subpoints == ["Orphan point"]
    assert [s.number for s in parsed_unit.main_outcomes[0].sub_outcomes] == ["2.1"]


def test_text_before_first_sub_outcome_is_ignored() -> None:
    unit = default_unit(outcomes=[("1", "Main"), (None, "Stray note"), ("1.1", "Sub")])
    parsed = parse_qualification_workbook(build_workbook(units=[unit]))
    sub = parsed.units[0].main_outcomes[0].sub_outcomes[0]
    assert sub.subpoints == []


def test_front_page_sheet_is_skipped() -> None:
    units = [
        default_unit(sheet="Front Page", ref="SKIP/1"),
        default_unit(number="2", ref="K/601/0001"),
    ]
    parsed = parse_qualification_workbook(build_workbook(units=units))
    assert [u.unit_ref_no for u in parsed.units] == ["K/601/0001"]


def test_empty_content_rejected() -> None:
    with pytest.raises(ImportValidationError):
        parse_qualification_workbook(b"")


def test_not_a_workbook_rejected() -> None:
    with pytest.raises(ImportValidationError, match="Invalid Excel file"):
        parse_qualification_workbook(b"this is not a zip file")


def test_missing_qualification_number_rejected() -> None:
    with pytest.raises(ImportValidationError, match="missing"):
        parse_qualification_workbook(build_workbook(number=""))


def test_missing_unit_reference_rejected() -> None:
    with pytest.raises(ImportValidationError, match="Unit Reference Number is missing"):
        parse_qualification_workbook(build_workbook(units=[default_unit(ref="")]))


def test_duplicate_reference_in_file_rejected() -> None:
    units = [default_unit(), default_unit(number="2", sheet="Second")]
    with pytest.raises(ImportValidationError, match="Duplicate Unit Reference Number"):
        parse_qualification_workbook(build_workbook(units=units))


def test_no_mandatory_unit_rejected() -> None:
    units = [
        default_unit(category="Optional A", mandatory="No"),
        default_unit(number="2", ref="K/601/0001", category="Optional B", mandatory="No"),
    ]
    with pytest.raises(ImportValidationError, match="mandatory"):
        parse_qualification_workbook(build_workbook(units=units))


def test_category_flag_conflict_within_file_rejected() -> None:
    units = [
        default_unit(category="Shared", mandatory="Yes"),
        default_unit(number="2", ref="K/601/0001", category="shared", mandatory="No"),
    ]
    with pytest.raises(ImportValidationError, match="both mandatory and optional"):
        parse_qualification_workbook(build_workbook(units=units))
