"""Shared test helpers: auth headers and in-memory import workbooks."""

import io
from typing import Dict, List, Optional

from openpyxl import Workbook

from app.auth.models import User
from app.auth.security import create_access_token

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def auth_headers(user: User) -> Dict[str, str]:
    token = create_access_token(subject={"sub": str(user.id), "user_id": str(user.id), "role": user.role})
    return {"Authorization": f"Bearer {token}"}


def default_unit(**overrides) -> dict:
    unit = {
        "number": "1",
        "title": "Safeguarding",
        "ref": "H/601/8574",
        "category": "Core",
        "mandatory": "Yes",
        "outcomes": [
            ("1", "Understand safeguarding"),
            ("1.10", "Explain reporting duties"),
            (None, "- Identify who to report to"),
            ("1.2", "Describe types of abuse"),
            (None, "• Physical"),
            (None, "• Emotional"),
            ("2", "Be able to respond"),
            ("2.1", "Respond to a disclosure"),
            (None, "Record the disclosure"),
        ],
    }
    unit.update(overrides)
    return unit


def build_workbook(
    name: str = "Level 3 Diploma in Care",
    number: str = "603/1234/5",
    units: Optional[List[dict]] = None,
) -> bytes:
    """
    First sheet carries the qualification name and number; one sheet per unit dict after it.
    Unit outcomes are (code, text) rows written from row 7 down.
    """
    wb = Workbook()
    front = wb.active
    front.title = "Qualification"
    front["A1"] = "Name"
    front["B1"] = name
    front["A2"] = "Number"
    front["B2"] = number

    for unit in units if units is not None else [default_unit()]:
        ws = wb.create_sheet(title=unit.get("sheet", f"Unit {unit['number']}"))
        ws["B1"] = unit["number"]
        ws["B2"] = unit["title"]
        ws["B3"] = unit["ref"]
        ws["B4"] = unit["category"]
        ws["B5"] = unit["mandatory"]
        for offset, (code, text) in enumerate(unit.get("outcomes", [])):
            ws.cell(row=7 + offset, column=1, value=code)
            ws.cell(row=7 + offset, column=2, value=text)

    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()


def upload(content: bytes, filename: str = "qualification.xlsx") -> dict:
    return {"file": (filename, content, XLSX)}
