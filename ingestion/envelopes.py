"""
Response envelope extraction.

Providers wrap list results differently per resource. Each endpoint names
its extractor; an extractor returns a typed ``Page`` or raises
``ResponseShapeError``. A page that is genuinely empty comes back as an
empty list, never as a silent default for an unrecognized shape.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from core.exceptions import ResponseShapeError

if TYPE_CHECKING:
    from ingestion.endpoints import Endpoint


@dataclass(frozen=True)
class Page:
    """One page of list results; flattened envelopes count their flattened items."""

    items: List[Dict[str, Any]]
    total_pages: Optional[int] = None

    @property
    def count(self) -> int:
        return len(self.items)


def _shape_error(payload: Any, endpoint: "Endpoint", reason: str) -> ResponseShapeError:
    keys = sorted(payload.keys()) if isinstance(payload, dict) else type(payload).__name__
    return ResponseShapeError(
        f"Unexpected response shape for {endpoint.name}: {reason}",
        context={"endpoint": endpoint.name, "resource_key": endpoint.resource_key, "keys": keys}
    )


def _require_objects(items: List[Any], payload: Any, endpoint: "Endpoint") -> List[Dict[str, Any]]:
    if any(not isinstance(item, dict) for item in items):
        raise _shape_error(payload, endpoint, "items are not objects")
    return items


def _total_pages(payload: Any) -> Optional[int]:
    if not isinstance(payload, dict):
        return None
    meta = payload.get("meta")
    if not isinstance(meta, dict) and isinstance(payload.get("data"), dict):
        meta = payload["data"].get("meta")
    if isinstance(meta, dict) and meta.get("total_pages") is not None:
        try:
            return int(meta["total_pages"])
        except (TypeError, ValueError):
            return None
    return None


def extract_items(payload: Any, endpoint: "Endpoint") -> Page:
    """
    Locate the item array: resource-named key, then ``data`` (a list, or an
    object holding the resource key), then a top-level array.
    """
    key = endpoint.resource_key
    items = None

    if isinstance(payload, dict):
        if key and isinstance(payload.get(key), list):
            items = payload[key]
        elif isinstance(payload.get("data"), list):
            items = payload["data"]
        elif key and isinstance(payload.get("data"), dict) and isinstance(payload["data"].get(key), list):
            items = payload["data"][key]
    elif isinstance(payload, list):
        items = payload

    if items is None:
        raise _shape_error(payload, endpoint, f"no item array under '{key}', 'data' or top level")

    return Page(items=_require_objects(items, payload, endpoint), total_pages=_total_pages(payload))


def extract_single(payload: Any, endpoint: "Endpoint") -> Dict[str, Any]:
    """Detail endpoints: the object under the resource key, or the payload itself."""
    key = endpoint.resource_key
    if isinstance(payload, dict):
        if key and isinstance(payload.get(key), dict):
            return payload[key]
        if isinstance(payload.get("data"), dict):
            return payload["data"]
        if "id" in payload:
            return payload
    raise _shape_error(payload, endpoint, "no object in detail response")


def extract_attendance(payload: Any, endpoint: "Endpoint") -> Page:
    """
    Daily attendance comes back per student: ``data.attendanceList`` holds
    ``{studentId, attendanceList: [...]}`` entries. Each inner record is
    flattened into one event carrying its student id.
    """
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict) \
            and isinstance(payload["data"].get("attendanceList"), list):
        students = _require_objects(payload["data"]["attendanceList"], payload, endpoint)
        events = []
        for student in students:
            student_id = student.get("studentId") or student.get("student_id")
            for record in student.get("attendanceList") or []:
                if not isinstance(record, dict):
                    raise _shape_error(payload, endpoint, "attendance entries are not objects")
                events.append({
                    **record,
                    "studentId": record.get("studentId") or student_id,
                    "attendanceDate": record.get("attendanceDate") or record.get("date")
                    or record.get("attendance_date"),
                })
        return Page(items=events)

    # Flat variants seen on older tenants
    if isinstance(payload, dict):
        for key in ("attendance", "dailyAttendance"):
            if isinstance(payload.get(key), list):
                return Page(items=_require_objects(payload[key], payload, endpoint))

    return extract_items(payload, endpoint)


def extract_daily_plans(payload: Any, endpoint: "Endpoint") -> Page:
    """
    Timetable responses: an array, an array under ``plans``, ``data`` or
    ``dailyPlan``, or a single plan object.
    """
    if isinstance(payload, list):
        return Page(items=_require_objects(payload, payload, endpoint))
    if isinstance(payload, dict):
        for key in ("plans", "data", "dailyPlan"):
            if isinstance(payload.get(key), list):
                return Page(items=_require_objects(payload[key], payload, endpoint))
        if any(key in payload for key in ("date", "planDate", "plan_date")):
            return Page(items=[payload])
    raise _shape_error(payload, endpoint, "no plan array or plan object")


def _unwrap(payload: Any, key: str) -> Any:
    if isinstance(payload, dict) and key not in payload and isinstance(payload.get("data"), dict):
        return payload["data"]
    return payload


def extract_academic_years(payload: Any, endpoint: "Endpoint") -> Page:
    """
    ``academic_years`` maps each program to ``{academic_years: [...]}``.
    Years are flattened with their program code attached.
    """
    payload = _unwrap(payload, "academic_years")
    programs = payload.get("academic_years") if isinstance(payload, dict) else None
    if isinstance(programs, list):
        return Page(items=_require_objects(programs, payload, endpoint))
    if not isinstance(programs, dict):
        raise _shape_error(payload, endpoint, "no 'academic_years' mapping")

    items = []
    for program_code, program in programs.items():
        years = program.get("academic_years") if isinstance(program, dict) else None
        for year in _require_objects(years or [], payload, endpoint):
            items.append({**year, "program_code": program_code})
    return Page(items=items)


def extract_grades(payload: Any, endpoint: "Endpoint") -> Page:
    """Grades are nested per program under ``school.programs``."""
    payload = _unwrap(payload, "school")
    school = payload.get("school", payload) if isinstance(payload, dict) else None
    programs = school.get("programs") if isinstance(school, dict) else None
    if not isinstance(programs, list):
        raise _shape_error(payload, endpoint, "no 'school.programs' array")

    items = []
    for program in _require_objects(programs, payload, endpoint):
        for grade in _require_objects(program.get("grades") or [], payload, endpoint):
            items.append({**grade, "program_code": program.get("code")})
    return Page(items=items)


def extract_subjects(payload: Any, endpoint: "Endpoint") -> Page:
    """
    Subjects come as a flat array or grouped by program, optionally under
    ``subjects``. Ungrouped subjects get the program code ``general``.
    """
    if isinstance(payload, dict) and "subjects" in payload:
        payload = payload["subjects"]
    if isinstance(payload, list):
        payload = {"general": payload}
    if not isinstance(payload, dict):
        raise _shape_error(payload, endpoint, "no subject array or program mapping")

    groups = {program: subjects for program, subjects in payload.items() if isinstance(subjects, list)}
    if payload and not groups:
        raise _shape_error(payload, endpoint, "program mapping holds no subject arrays")

    items = []
    for program_code, subjects in groups.items():
        for subject in _require_objects(subjects, payload, endpoint):
            items.append({**subject, "program_code": program_code.lower()})
    return Page(items=items)
