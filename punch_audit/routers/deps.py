from fastapi import Header, Request

from punch_audit.errors import ApiError
from punch_audit.settings import AttendanceRules, get_attendance_rules


def get_actor_id(
    request: Request,
    x_actor_id: str | None = Header(default=None),
) -> str:
    # Sessions live in front of this service; it only records who acted.
    actor_id = (x_actor_id or "").strip() or "system"
    request.state.actor_id = actor_id
    return actor_id


def get_member_employee_id(
    request: Request,
    x_employee_id: str | None = Header(default=None),
) -> int:
    raw = (x_employee_id or "").strip()
    if not raw.isdigit():
        raise ApiError(
            status_code=401,
            code="MEMBER_IDENTITY_REQUIRED",
            message="X-Employee-Id header is required for self-service actions.",
        )
    employee_id = int(raw)
    request.state.employee_id = employee_id
    return employee_id


def get_rules(request: Request) -> AttendanceRules:
    # Validated once at startup; falls back to the cached settings when startup hooks did not run.
    rules = getattr(request.app.state, "attendance_rules", None)
    return rules if rules is not None else get_attendance_rules()
