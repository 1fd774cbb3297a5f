from __future__ import annotations

import re
import csv
import io
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .config import PAGE_SIZE_OPTIONS, DEFAULT_PAGE_SIZE

SEARCH_COLUMNS = ("name", "father", "class", "university_roll", "phone")
EXPORT_COLUMNS = (
    "student_id", "name", "father", "class", "semester", "roll_no",
    "university_roll", "phone", "address", "photo_url",
)
PLACEHOLDER = "—"

SEMESTER_OPTIONS = ("1st Year", "2nd Year", "3rd Year")
CLASS_OPTIONS = (
    "B. Voc.",
    "B.A - Bachelors",
    "B.Com - Bachelors",
    "B.Sc - Medical",
    "B.Sc - Non-Medical-1st Year College",
    "B.Sc - Non-Medical-2nd Year College",
    "B.Sc - Non-Medical-3rd Year College",
    "B.Sc. - Physical Science-1st Year College",
    "B.Sc. - Physical Science-2nd Year College",
    "B.Sc. - Physical Science-3rd Year College",
    "B.Sc. Hons. Biotechnology-1st Year College",
    "B.Sc. Hons. Biotechnology-2nd Year College",
    "B.Sc. Hons. Biotechnology-3rd Year College",
    "B.Tech - Computer Science and Engineering-1st Sem College",
    "B.Tech - Computer Science and Engineering-2nd Sem College",
    "B.Tech - Computer Science and Engineering-3rd Sem College",
    "B.Tech - Computer Science and Engineering-5th Sem College",
    "B.Tech - Computer Science and Engineering-6th Sem College",
    "B.Tech - Computer Science and Engineering-7th Sem College",
    "B.Tech - Computer Science and Engineering-8th Sem College",
    "BBA - Bachelor of Business Administration-1st Sem College",
    "BBA - Bachelor of Business Administration-2nd Sem College",
    "BBA - Bachelor of Business Administration-3rd Sem College",
    "BBA - Bachelor of Business Administration-4th Sem College",
    "BBA - Bachelor of Business Administration-5th Sem College",
    "BBA - Bachelor of Business Administration-6th Sem College",
    "BCA - Bachelor of Computer Application-1st Sem College",
    "BCA - Bachelor of Computer Application-2nd Sem College",
    "BCA - Bachelor of Computer Application-3rd Sem College",
    "BCA - Bachelor of Computer Application-4th Sem College",
    "BCA - Bachelor of Computer Application-5th Sem College",
    "BCA - Bachelor of Computer Application-6th Sem College",
    "M.A. English-1st Sem College",
    "M.A. English-2nd Sem College",
    "M.A. English-3rd Sem College",
    "M.A. English-4th Sem College",
    "M.Sc. Chemistry-1st Sem College",
    "M.Sc. Chemistry-2nd Sem College",
    "M.Sc. Chemistry-3rd Sem College",
    "M.Sc. Chemistry-4th Sem College",
    "M.Sc. Geography-1st Sem College",
    "M.Sc. Geography-2nd Sem College",
    "M.Sc. Geography-3rd Sem College",
    "M.Sc. Geography-4th Sem College",
    "Master of Business Administration - MBA-1st Sem College",
    "Master of Business Administration - MBA-3rd Sem College",
    "Master of Business Administration - MBA-3rd Year College",
    "Master of Business Administration - MBA-4th Sem College",
    "Master of Commerce",
    "Master of Computer Application - MCA-1st Sem College",
    "Master of Computer Application - MCA-2nd Sem College",
    "Master of Computer Application - MCA-3rd Sem College",
    "Master of Computer Application - MCA-4th Sem College",
    "PGDCA - Post Graduate Diploma in Computer Applications-1st Sem College",
    "PGDCA - Post Graduate Diploma in Computer Applications-2nd Sem College",
)


# ----------------------------
# Query building
# ----------------------------
def quote_value(value: str) -> str:
    # reserved chars (, . : ( )) are literal inside double quotes
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


@dataclass(frozen=True)
class StudentQuery:
    search: str = ""
    cls: str = ""
    semester: str = ""
    missing_photo: bool = False

    def to_params(self) -> List[Tuple[str, str]]:
        params = [("select", "*")]
        q = (self.search or "").strip()
        if q:
            pattern = quote_value(f"*{q}*")
            conds = ",".join(f"{col}.ilike.{pattern}" for col in SEARCH_COLUMNS)
            params.append(("or", f"({conds})"))
        if self.cls:
            params.append(("class", f"eq.{self.cls}"))
        if self.semester:
            params.append(("semester", f"eq.{self.semester}"))
        if self.missing_photo:
            params.append(("photo_url", "is.null"))
        params.append(("order", "student_id.asc"))
        return params


def normalize_page_size(page_size: Optional[int]) -> int:
    if page_size in PAGE_SIZE_OPTIONS:
        return page_size
    return DEFAULT_PAGE_SIZE


def page_range(page: int, page_size: int) -> Tuple[int, int]:
    page = max(1, page)
    return (page - 1) * page_size, page * page_size - 1


def has_next_page(page: int, page_size: int, total: int) -> bool:
    return page * page_size < total


def parse_content_range(header: Optional[str], fallback: int) -> int:
    """'0-49/1234' -> 1234, '*/0' -> 0; an unknown total ('0-49/*')
    falls back to the number of rows we got."""
    if not header or "/" not in header:
        return fallback
    total = header.rsplit("/", 1)[1].strip()
    if total.isdigit():
        return int(total)
    return fallback


# ----------------------------
# Presentation
# ----------------------------
def clean_phone(phone: Any) -> Optional[str]:
    if phone is None or phone == "":
        return None
    # spreadsheet imports turn numbers into floats: "9876543210.0"
    return re.sub(r"\.0$", "", str(phone))


def teaser_name(name: Any) -> str:
    if not name:
        return PLACEHOLDER
    return f"{str(name)[:3]}..."


def redact(student: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "student_id": student.get("student_id"),
        "name": teaser_name(student.get("name")),
        "photo_url": student.get("photo_url"),
        "locked": True,
    }


def reveal(student: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(student)
    out["phone"] = clean_phone(student.get("phone"))
    out["locked"] = False
    return out


def to_csv(students: Iterable[Dict[str, Any]]) -> str:
    buf = io.StringIO()
    w = csv.DictWriter(buf, fieldnames=EXPORT_COLUMNS, extrasaction="ignore")
    w.writeheader()
    for s in students:
        row = {k: ("" if s.get(k) is None else s.get(k))
               for k in EXPORT_COLUMNS}
        row["phone"] = clean_phone(s.get("phone")) or ""
        w.writerow(row)
    return buf.getvalue()
