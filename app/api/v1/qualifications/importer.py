"""
Qualification spreadsheet parsing.

Layout of an import workbook:

* first sheet: B1 qualification name, B2 qualification number
* every other sheet (except one named "Front Page") is a unit:
  B1 unit number, B2 unit title, B3 unit reference, B4 category, B5 "Yes" when mandatory
* from row 7 down, column A holds an outcome code and column B its text:
  "1" (or "1.0") starts a main outcome, "1.2" a sub-outcome, and a blank code
  with text is a subpoint of the current sub-outcome.

Parsing is pure: nothing here touches the database.
"""

import io
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from openpyxl import load_workbook

MAIN_OUTCOME_CODE = re.compile(r"^[0-9]+(\.0+)*$")
SUB_OUTCOME_CODE = re.compile(r"^[0-9]+\.[0-9]+$")
FRONT_PAGE_NAMES = {"front page", "frontpage"}
OUTCOME_FIRST_ROW = 7

# 0xF0B7 is the Symbol-font bullet Word/Excel leave behind on pasted lists
_BULLET_CODEPOINTS = (
    0xF0B7, 0x2022, 0x25CF, 0x25AA, 0x2023, 0x25E6, 0x00A4, 0x00B7, 0x2013, 0x2014,
    0x2024, 0x2043, 0x2219, 0x25AB, 0x25B6, 0x25C0, 0x25C6, 0x25CB, 0x25D9, 0x25E7,
)
_BULLETS = "".join(chr(c) for c in _BULLET_CODEPOINTS) + "".join(chr(c) for c in range(0x25F7, 0x2600))
_LEADING_BULLETS = re.compile("^[\\s\\-*" + re.escape(_BULLETS) + "]+")
_LEADING_SEPARATORS = re.compile(r"^[\s\-_*]+")


class ImportValidationError(ValueError):
    """The workbook is readable but its content cannot be imported."""


@dataclass
class ParsedSubOutcome:
    number: str
    description: str
    subpoints: List[str] = field(default_factory=list)


@dataclass
class ParsedMainOutcome:
    number: str
    description: str
    sub_outcomes: List[ParsedSubOutcome] = field(default_factory=list)


@dataclass
class ParsedUnit:
    sheet_name: str
    unit_number: str
    unit_title: str
    unit_ref_no: str
    category: str
    is_mandatory: bool
    main_outcomes: List[ParsedMainOutcome] = field(default_factory=list)
    # Sub-outcomes that appeared before any main outcome row
    orphan_sub_outcomes: List[ParsedSubOutcome] = field(default_factory=list)


@dataclass
class ParsedQualification:
    name: str
    qualification_no: str
    units: List[ParsedUnit] = field(default_factory=list)


def clean_point_text(text: Optional[str]) -> str:
    """Strip bullet glyphs, dashes and whitespace that precede a subpoint's text."""
    if not text:
        return ""
    cleaned = _LEADING_BULLETS.sub("", text)
    cleaned = _LEADING_SEPARATORS.sub("", cleaned)
    return cleaned.strip()


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _parse_unit_sheet(ws) -> ParsedUnit:
    unit = ParsedUnit(
        sheet_name=ws.title,
        unit_number=_cell_text(ws["B1"].value),
        unit_title=_cell_text(ws["B2"].value),
        unit_ref_no=_cell_text(ws["B3"].value),
        category=_cell_text(ws["B4"].value),
        is_mandatory=_cell_text(ws["B5"].value) == "Yes",
    )
    if not unit.unit_ref_no:
        raise ImportValidationError(
            f"Unit Reference Number is missing for unit {unit.unit_number or ws.title}"
        )

    current_main: Optional[ParsedMainOutcome] = None
    current_sub: Optional[ParsedSubOutcome] = None
    for row in ws.iter_rows(min_row=OUTCOME_FIRST_ROW, max_col=2, values_only=True):
        code = _cell_text(row[0] if len(row) > 0 else None)
        description = _cell_text(row[1] if len(row) > 1 else None)

        if code and MAIN_OUTCOME_CODE.match(code):
            current_main = ParsedMainOutcome(number=code, description=description)
            unit.main_outcomes.append(current_main)
            current_sub = None
        elif code and SUB_OUTCOME_CODE.match(code):
            current_sub = ParsedSubOutcome(number=code, description=description)
            if current_main is not None:
                current_main.sub_outcomes.append(current_sub)
            else:
                unit.orphan_sub_outcomes.append(current_sub)
        elif current_sub is not None and not code and description:
            point_text = clean_point_text(description)
            if point_text:
                current_sub.subpoints.append(point_text)
    return unit


def parse_qualification_workbook(content: bytes) -> ParsedQualification:
    """Parse an uploaded .xlsx. Raises ImportValidationError for anything that must reject the import."""
    if not content:
        raise ImportValidationError("Please upload a valid file.")
    try:
        wb = load_workbook(filename=io.BytesIO(content), data_only=True)
    except Exception as e:
        raise ImportValidationError(f"Invalid Excel file: {e}") from e

    try:
        sheets = wb.worksheets
        if not sheets:
            raise ImportValidationError("Excel file has no sheets")
        front = sheets[0]
        parsed = ParsedQualification(
            name=_cell_text(front["B1"].value),
            qualification_no=_cell_text(front["B2"].value),
        )
        if not parsed.name or not parsed.qualification_no:
            raise ImportValidationError("Qualification name or number is missing in the Excel file.")

        for ws in sheets[1:]:
            if ws.title.strip().lower() in FRONT_PAGE_NAMES:
                continue
            parsed.units.append(_parse_unit_sheet(ws))
    finally:
        wb.close()

    _validate_units(parsed.units)
    return parsed


def _validate_units(units: List[ParsedUnit]) -> None:
    seen_refs: Dict[str, str] = {}
    category_flags: Dict[str, bool] = {}
    for unit in units:
        if unit.unit_ref_no in seen_refs:
            raise ImportValidationError(
                f"Duplicate Unit Reference Number {unit.unit_ref_no} in sheets "
                f"'{seen_refs[unit.unit_ref_no]}' and '{unit.sheet_name}'"
            )
        seen_refs[unit.unit_ref_no] = unit.sheet_name

        key = unit.category.lower()
        if key in category_flags and category_flags[key] != unit.is_mandatory:
            raise ImportValidationError(
                f"Category '{unit.category}' is marked both mandatory and optional in this file."
            )
        category_flags[key] = unit.is_mandatory

    if not any(u.is_mandatory for u in units):
        raise ImportValidationError("At least one unit must belong to a mandatory category.")
