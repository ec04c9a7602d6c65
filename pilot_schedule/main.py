import os
import logging
import sqlite3
from typing import Optional, Dict, Any, List

from fastapi import FastAPI, HTTPException, Depends, Response, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .db import connect
from .schema_sql import SCHEMA_SQL
from .utils import (
    SHIFT_LETTERS,
    strip_or_none,
    to_int_or_none,
    to_bool,
    to_date_iso,
    normalize_start_time,
    row_to_dict,
    rows_to_dicts,
)
from .auth import (
    ROLE_LABELS,
    ASSIGNABLE_ROLES,
    create_user,
    ensure_default_users,
    find_login_user,
    create_session,
    delete_session,
    verify_password,
    require_role,
    require_user,
)
from . import drafts
from . import push

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s:%(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Pilot Schedule")

# CORS configurable via environment
def _parse_csv_env(s: str) -> list[str]:
    parts = [p.strip() for p in (s or "").split(",")]
    return [p for p in parts if p]

_origins_env = os.getenv("ALLOWED_ORIGINS", "*")
_methods_env = os.getenv("CORS_ALLOW_METHODS", "*")
_headers_env = os.getenv("CORS_ALLOW_HEADERS", "*")
_creds_env = os.getenv("CORS_ALLOW_CREDENTIALS", "true").lower() in ("1", "true", "yes")

_allow_origins = ["*"] if _origins_env.strip() == "*" else _parse_csv_env(_origins_env)
_allow_methods = ["*"] if _methods_env.strip() == "*" else _parse_csv_env(_methods_env)
_allow_headers = ["*"] if _headers_env.strip() == "*" else _parse_csv_env(_headers_env)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allow_origins,
    allow_credentials=_creds_env,
    allow_methods=_allow_methods,
    allow_headers=_allow_headers,
)

USER_COLUMNS = "id, username, first_name, last_name, email, role, is_active, created_at"
SCHEDULE_COLUMNS = "id, month, year, shifts_per_day, is_published, version, created_by, created_at"
SHIFT_DEF_COLUMNS = "id, schedule_id, shift_letter, start_time, duration_hours, pilots_required"

PREFERENCE_CATEGORIES = [
    ("newSchedulePublished", "new_schedule_published"),
    ("scheduleChanges", "schedule_changes"),
    ("shiftReminders", "shift_reminders"),
]


@app.on_event("startup")
def startup():
    with connect() as con:
        cur = con.cursor()
        cur.executescript(SCHEMA_SQL)
        ensure_default_users(cur)
        con.commit()


# ---------------------- Errors ----------------------


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": [str(p) for p in e.get("loc", ())], "msg": str(e.get("msg", ""))}
        for e in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"message": "Invalid request", "errors": errors})


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


# ---------------------- Auth ----------------------


@app.post("/auth/login")
def login(payload: Dict[str, Any], response: Response):
    identifier = payload.get("email") or payload.get("username") or ""
    password = payload.get("password") or ""
    if not isinstance(identifier, str) or not isinstance(password, str):
        raise HTTPException(status_code=400, detail="Email and password must be strings")
    identifier = identifier.strip()
    if not identifier or not password:
        raise HTTPException(status_code=400, detail="Email and password are required")
    with connect() as con:
        cur = con.cursor()
        row = find_login_user(cur, identifier)
        if not row or not verify_password(password, row["password_salt"], row["password_hash"]):
            raise HTTPException(status_code=401, detail="Invalid credentials")
        session = create_session(cur, row["id"])
        con.commit()
        cookie_params = {
            "httponly": True,
            "samesite": "lax",
            "path": "/",
        }
        samesite_env = (os.getenv("COOKIE_SAMESITE", "lax") or "").strip().lower()
        if samesite_env in ("lax", "strict", "none"):
            cookie_params["samesite"] = samesite_env
        domain_env = (os.getenv("COOKIE_DOMAIN", "") or "").strip()
        if domain_env:
            cookie_params["domain"] = domain_env
        secure_env = os.getenv("COOKIE_SECURE", "false").lower() in ("1", "true", "yes")
        if cookie_params.get("samesite") == "none" or secure_env:
            cookie_params["secure"] = True
        response.set_cookie(key="session", value=session["token"], **cookie_params)
        return {
            "token": session["token"],
            "expires_at": session["expires_at"],
            "user": {
                "id": row["id"],
                "first_name": row["first_name"],
                "last_name": row["last_name"],
                "email": row["email"] or row["username"],
                "role": row["role"],
            },
        }


@app.post("/auth/logout")
def logout(response: Response, current_user: Dict[str, Any] = Depends(require_user)):
    with connect() as con:
        cur = con.cursor()
        delete_session(cur, current_user["session_token"])
        con.commit()
    response.delete_cookie("session", path="/")
    return {"ok": True}


@app.get("/auth/session")
def session(current_user: Dict[str, Any] = Depends(require_user)):
    return {
        "active": True,
        "user": {
            "id": current_user["id"],
            "username": current_user["username"],
            "email": current_user["email"],
            "first_name": current_user["first_name"],
            "last_name": current_user["last_name"],
            "role": current_user["role"],
        },
        "expires_at": current_user["session_expires_at"],
    }


# ---------------------- Helpers ----------------------


def _is_manager(user: Dict[str, Any]) -> bool:
    return user.get("role") == "manager"


def _get_schedule(cur, schedule_id: int):
    s = cur.execute(f"SELECT {SCHEDULE_COLUMNS} FROM monthly_schedules WHERE id=?", (schedule_id,)).fetchone()
    if not s:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return s


def _get_visible_schedule(cur, schedule_id: int, user: Dict[str, Any]):
    # Unpublished schedules do not exist for non-managers
    s = _get_schedule(cur, schedule_id)
    if not s["is_published"] and not _is_manager(user):
        raise HTTPException(status_code=404, detail="Schedule not found")
    return s


def _positive_int(v: Any, field: str, minimum: int = 1, maximum: Optional[int] = None) -> int:
    n = to_int_or_none(v)
    if n is None or n < minimum or (maximum is not None and n > maximum):
        if maximum is not None:
            raise HTTPException(status_code=400, detail=f"{field} must be an integer between {minimum} and {maximum}")
        raise HTTPException(status_code=400, detail=f"{field} must be an integer >= {minimum}")
    return n


def _slot_index(v: Any) -> int:
    if v is None or v == "":
        raise HTTPException(status_code=400, detail="slotIndex is required")
    return _positive_int(v, "slotIndex", minimum=0)


def _shift_definition_fields(payload: Dict[str, Any]) -> Dict[str, Any]:
    letter = strip_or_none(payload.get("shift_letter"))
    raw_time = payload.get("start_time")
    if not letter or not strip_or_none(raw_time):
        raise HTTPException(status_code=400, detail="Shift letter and start time are required")
    start_time = normalize_start_time(raw_time)
    if not start_time:
        raise HTTPException(status_code=400, detail="Invalid time format. Use HH:MM or HHMM")
    duration = payload.get("duration_hours")
    required = payload.get("pilots_required")
    return {
        "shift_letter": letter.upper(),
        "start_time": start_time,
        "duration_hours": 8 if duration in (None, "") else _positive_int(duration, "duration_hours"),
        "pilots_required": 2 if required in (None, "") else _positive_int(required, "pilots_required", minimum=0),
    }


def _get_assignable_pilot(cur, pilot_id: Any):
    pid = to_int_or_none(pilot_id)
    if pid is None:
        raise HTTPException(status_code=400, detail="pilotId is required")
    p = cur.execute("SELECT id, role, is_active FROM users WHERE id=?", (pid,)).fetchone()
    if not p:
        raise HTTPException(status_code=404, detail="Pilot not found")
    if not p["is_active"] or p["role"] not in ASSIGNABLE_ROLES:
        raise HTTPException(status_code=400, detail="User cannot be assigned to shifts")
    return p


def _get_shift_definition(cur, schedule_id: int, shift_id: Any):
    sid = to_int_or_none(shift_id)
    if sid is None:
        raise HTTPException(status_code=400, detail="shiftId is required")
    d = cur.execute(
        f"SELECT {SHIFT_DEF_COLUMNS} FROM shift_definitions WHERE id=? AND schedule_id=?",
        (sid, schedule_id),
    ).fetchone()
    if not d:
        raise HTTPException(status_code=404, detail="Shift definition not found")
    return d


def _get_training_day(cur, schedule_id: int, training_id: Any):
    tid = to_int_or_none(training_id)
    if tid is None:
        raise HTTPException(status_code=400, detail="trainingId is required")
    t = cur.execute(
        "SELECT id, schedule_id, training_date FROM training_days WHERE id=? AND schedule_id=?",
        (tid, schedule_id),
    ).fetchone()
    if not t:
        raise HTTPException(status_code=404, detail="Training day not found")
    return t


def _email_update(cur, user_id: int, contact: Dict[str, Any]) -> Dict[str, Any]:
    """SET fields for an email change; empty means remove, absent means keep."""
    if "email" not in contact:
        return {}
    email = strip_or_none(contact.get("email"))
    if email:
        return {"email": email.lower()}
    u = cur.execute("SELECT username FROM users WHERE id=?", (user_id,)).fetchone()
    if not u or not u["username"]:
        raise HTTPException(status_code=400, detail="Email is required for users without a username")
    return {"email": None}


def _required_date(v: Any, field: str) -> str:
    d = to_date_iso(v)
    if not d:
        raise HTTPException(status_code=400, detail=f"{field} is required in YYYY-MM-DD format")
    return d


# ---------------------- Schedules ----------------------


@app.get("/schedules")
def list_schedules(current_user: Dict[str, Any] = Depends(require_user)):
    with connect() as con:
        if _is_manager(current_user):
            rows = con.execute(
                f"SELECT {SCHEDULE_COLUMNS} FROM monthly_schedules ORDER BY year DESC, month DESC"
            ).fetchall()
        else:
            rows = con.execute(
                f"SELECT {SCHEDULE_COLUMNS} FROM monthly_schedules WHERE is_published = 1 ORDER BY year DESC, month DESC"
            ).fetchall()
        return {"schedules": rows_to_dicts(rows)}


@app.post("/schedules")
def create_schedule(payload: Dict[str, Any], current_user: Dict[str, Any] = Depends(require_role("manager"))):
    month = _positive_int(payload.get("month"), "month", 1, 12)
    year = _positive_int(payload.get("year"), "year")
    shifts_per_day = _positive_int(payload.get("shifts_per_day"), "shifts_per_day", 1, len(SHIFT_LETTERS))
    with connect() as con:
        cur = con.cursor()
        existing = cur.execute(
            "SELECT id FROM monthly_schedules WHERE month=? AND year=?", (month, year)
        ).fetchone()
        if existing:
            raise HTTPException(status_code=400, detail="A schedule for this month already exists")
        try:
            cur.execute(
                """
                INSERT INTO monthly_schedules(month, year, shifts_per_day, created_by, is_published, version)
                VALUES (?,?,?,?,0,0)
                """,
                (month, year, shifts_per_day, current_user["id"]),
            )
        except sqlite3.IntegrityError:
            raise HTTPException(status_code=400, detail="A schedule for this month already exists")
        schedule_id = cur.lastrowid
        cur.executemany(
            """
            INSERT INTO shift_definitions(schedule_id, shift_letter, start_time, duration_hours, pilots_required)
            VALUES (?, ?, '08:00', 8, 2)
            """,
            [(schedule_id, letter) for letter in SHIFT_LETTERS[:shifts_per_day]],
        )
        schedule = _get_schedule(cur, schedule_id)
        con.commit()
        logger.info("Schedule %s created for %02d/%s by user %s", schedule_id, month, year, current_user["id"])
        return {"message": "Schedule created successfully", "schedule": row_to_dict(schedule)}


@app.get("/schedules/{schedule_id}")
def get_schedule(schedule_id: int, current_user: Dict[str, Any] = Depends(require_user)):
    with connect() as con:
        s = _get_visible_schedule(con.cursor(), schedule_id, current_user)
        return {"schedule": row_to_dict(s)}


@app.put("/schedules/{schedule_id}")
def update_schedule(
    schedule_id: int,
    payload: Dict[str, Any],
    current_user: Dict[str, Any] = Depends(require_role("manager")),
):
    shifts_per_day = _positive_int(payload.get("shifts_per_day"), "shifts_per_day", 1, len(SHIFT_LETTERS))
    with connect() as con:
        cur = con.cursor()
        _get_schedule(cur, schedule_id)
        cur.execute("UPDATE monthly_schedules SET shifts_per_day=? WHERE id=?", (shifts_per_day, schedule_id))
        s = _get_schedule(cur, schedule_id)
        con.commit()
        return {"message": "Schedule updated successfully", "schedule": row_to_dict(s)}


@app.delete("/schedules/{schedule_id}")
def delete_schedule(schedule_id: int, current_user: Dict[str, Any] = Depends(require_role("manager"))):
    with connect() as con:
        cur = con.cursor()
        _get_schedule(cur, schedule_id)
        daily = "SELECT id FROM daily_shifts WHERE schedule_id = ?"
        training = "SELECT id FROM training_days WHERE schedule_id = ?"
        cur.execute(f"DELETE FROM draft_shift_assignments WHERE daily_shift_id IN ({daily})", (schedule_id,))
        cur.execute(f"DELETE FROM shift_assignments WHERE daily_shift_id IN ({daily})", (schedule_id,))
        cur.execute("DELETE FROM daily_shifts WHERE schedule_id=?", (schedule_id,))
        cur.execute("DELETE FROM shift_definitions WHERE schedule_id=?", (schedule_id,))
        cur.execute(f"DELETE FROM draft_training_assignments WHERE training_day_id IN ({training})", (schedule_id,))
        cur.execute(f"DELETE FROM training_assignments WHERE training_day_id IN ({training})", (schedule_id,))
        cur.execute("DELETE FROM training_days WHERE schedule_id=?", (schedule_id,))
        cur.execute("DELETE FROM monthly_schedules WHERE id=?", (schedule_id,))
        con.commit()
        logger.info("Schedule %s deleted by user %s", schedule_id, current_user["id"])
        return {"message": "Schedule deleted successfully"}


@app.post("/schedules/{schedule_id}/publish")
def publish_schedule(schedule_id: int, current_user: Dict[str, Any] = Depends(require_role("manager"))):
    with connect() as con:
        try:
            result = drafts.publish_schedule(con, schedule_id)
        except drafts.ScheduleNotFound:
            raise HTTPException(status_code=404, detail="Schedule not found")
    return {
        "message": (
            f"Schedule published successfully as version {result['version']}. "
            "Draft assignments copied to published tables."
        ),
        "schedule": result["schedule"],
    }


# ---------------------- Draft assignments ----------------------


@app.get("/schedules/{schedule_id}/assignments")
def get_draft_assignments(schedule_id: int, current_user: Dict[str, Any] = Depends(require_role("manager"))):
    with connect() as con:
        _get_schedule(con.cursor(), schedule_id)
        return drafts.load_draft(con, schedule_id)


@app.post("/schedules/{schedule_id}/assignments")
def save_draft_assignment(
    schedule_id: int,
    payload: Dict[str, Any],
    current_user: Dict[str, Any] = Depends(require_role("manager")),
):
    kind = payload.get("type")
    if kind not in drafts.ASSIGNMENT_TYPES:
        raise HTTPException(status_code=400, detail="Invalid assignment type")
    slot = _slot_index(payload.get("slotIndex"))
    with connect() as con:
        cur = con.cursor()
        _get_schedule(cur, schedule_id)
        pilot = _get_assignable_pilot(cur, payload.get("pilotId"))
        if kind == "shift":
            shift_date = _required_date(payload.get("date"), "date")
            shift_def = _get_shift_definition(cur, schedule_id, payload.get("shiftId"))
            daily_shift_id = drafts.ensure_daily_shift(cur, schedule_id, shift_def["id"], shift_date)
            drafts.upsert_draft_shift(cur, daily_shift_id, slot, pilot["id"], current_user["id"])
        else:
            training_day = _get_training_day(cur, schedule_id, payload.get("trainingId"))
            drafts.upsert_draft_training(cur, training_day["id"], slot, pilot["id"], current_user["id"])
        con.commit()
        return {"message": "Draft assignment saved successfully"}


@app.post("/schedules/{schedule_id}/assignments/delete")
def delete_draft_assignment(
    schedule_id: int,
    payload: Dict[str, Any],
    current_user: Dict[str, Any] = Depends(require_role("manager")),
):
    kind = payload.get("type")
    if kind not in drafts.ASSIGNMENT_TYPES:
        raise HTTPException(status_code=400, detail="Invalid assignment type")
    slot = _slot_index(payload.get("slotIndex"))
    with connect() as con:
        cur = con.cursor()
        _get_schedule(cur, schedule_id)
        if kind == "shift":
            shift_date = _required_date(payload.get("date"), "date")
            shift_def = _get_shift_definition(cur, schedule_id, payload.get("shiftId"))
            daily_shift_id = drafts.find_daily_shift(cur, schedule_id, shift_def["id"], shift_date)
            if daily_shift_id is None:
                raise HTTPException(status_code=404, detail="Shift not found")
            drafts.delete_draft_shift(cur, daily_shift_id, slot)
        else:
            training_day = _get_training_day(cur, schedule_id, payload.get("trainingId"))
            drafts.delete_draft_training(cur, training_day["id"], slot)
        con.commit()
        return {"message": "Draft assignment deleted successfully"}


# ---------------------- Published views ----------------------


@app.get("/assignments/published")
def get_published_assignments(
    scheduleId: Optional[int] = None,
    current_user: Dict[str, Any] = Depends(require_user),
):
    if scheduleId is None:
        raise HTTPException(status_code=400, detail="Schedule ID required")
    with connect() as con:
        return drafts.load_published_shifts(con.cursor(), scheduleId)


@app.get("/schedules/{schedule_id}/daily-shifts")
def list_daily_shifts(schedule_id: int, current_user: Dict[str, Any] = Depends(require_user)):
    with connect() as con:
        cur = con.cursor()
        _get_visible_schedule(cur, schedule_id, current_user)
        shifts = cur.execute(
            "SELECT id, shift_definition_id, shift_date FROM daily_shifts WHERE schedule_id=? ORDER BY shift_date, shift_definition_id",
            (schedule_id,),
        ).fetchall()
        pilots = cur.execute(
            """
            SELECT sa.daily_shift_id, sa.pilot_id AS id, u.first_name, u.last_name, sa.assignment_order
            FROM shift_assignments sa
            JOIN daily_shifts ds ON ds.id = sa.daily_shift_id
            JOIN users u ON u.id = sa.pilot_id
            WHERE ds.schedule_id = ?
            ORDER BY sa.assignment_order
            """,
            (schedule_id,),
        ).fetchall()
        by_shift: Dict[int, List[Dict[str, Any]]] = {}
        for p in pilots:
            d = dict(p)
            by_shift.setdefault(d.pop("daily_shift_id"), []).append(d)
        out = []
        for s in shifts:
            d = dict(s)
            d["pilots"] = by_shift.get(s["id"], [])
            out.append(d)
        return {"dailyShifts": out}


# ---------------------- Shift definitions ----------------------


@app.get("/schedules/{schedule_id}/shifts")
def list_shift_definitions(schedule_id: int, current_user: Dict[str, Any] = Depends(require_user)):
    with connect() as con:
        cur = con.cursor()
        _get_visible_schedule(cur, schedule_id, current_user)
        rows = cur.execute(
            f"SELECT {SHIFT_DEF_COLUMNS} FROM shift_definitions WHERE schedule_id=? ORDER BY shift_letter",
            (schedule_id,),
        ).fetchall()
        return {"shiftDefinitions": rows_to_dicts(rows)}


@app.post("/schedules/{schedule_id}/shifts")
def create_shift_definition(
    schedule_id: int,
    payload: Dict[str, Any],
    current_user: Dict[str, Any] = Depends(require_role("manager")),
):
    fields = _shift_definition_fields(payload)
    with connect() as con:
        cur = con.cursor()
        _get_schedule(cur, schedule_id)
        dup = cur.execute(
            "SELECT id FROM shift_definitions WHERE schedule_id=? AND shift_letter=?",
            (schedule_id, fields["shift_letter"]),
        ).fetchone()
        if dup:
            raise HTTPException(status_code=400, detail="A shift with this letter already exists for this schedule")
        cur.execute(
            """
            INSERT INTO shift_definitions(schedule_id, shift_letter, start_time, duration_hours, pilots_required)
            VALUES (:schedule_id, :shift_letter, :start_time, :duration_hours, :pilots_required)
            """,
            {**fields, "schedule_id": schedule_id},
        )
        row = _get_shift_definition(cur, schedule_id, cur.lastrowid)
        con.commit()
        return {"message": "Shift definition created successfully", "shiftDefinition": row_to_dict(row)}


@app.put("/schedules/{schedule_id}/shifts/{shift_id}")
def update_shift_definition(
    schedule_id: int,
    shift_id: int,
    payload: Dict[str, Any],
    current_user: Dict[str, Any] = Depends(require_role("manager")),
):
    fields = _shift_definition_fields(payload)
    with connect() as con:
        cur = con.cursor()
        _get_schedule(cur, schedule_id)
        _get_shift_definition(cur, schedule_id, shift_id)
        dup = cur.execute(
            "SELECT id FROM shift_definitions WHERE schedule_id=? AND shift_letter=? AND id != ?",
            (schedule_id, fields["shift_letter"], shift_id),
        ).fetchone()
        if dup:
            raise HTTPException(status_code=400, detail="A shift with this letter already exists for this schedule")
        sets = ", ".join([f"{k}=:{k}" for k in fields.keys()])
        cur.execute(
            f"UPDATE shift_definitions SET {sets} WHERE id=:id AND schedule_id=:schedule_id",
            {**fields, "id": shift_id, "schedule_id": schedule_id},
        )
        row = _get_shift_definition(cur, schedule_id, shift_id)
        con.commit()
        return {"message": "Shift definition updated successfully", "shiftDefinition": row_to_dict(row)}


@app.delete("/schedules/{schedule_id}/shifts/{shift_id}")
def delete_shift_definition(
    schedule_id: int,
    shift_id: int,
    current_user: Dict[str, Any] = Depends(require_role("manager")),
):
    with connect() as con:
        cur = con.cursor()
        _get_shift_definition(cur, schedule_id, shift_id)
        daily = "SELECT id FROM daily_shifts WHERE schedule_id = ? AND shift_definition_id = ?"
        params = (schedule_id, shift_id)
        cur.execute(f"DELETE FROM draft_shift_assignments WHERE daily_shift_id IN ({daily})", params)
        cur.execute(f"DELETE FROM shift_assignments WHERE daily_shift_id IN ({daily})", params)
        cur.execute("DELETE FROM daily_shifts WHERE schedule_id=? AND shift_definition_id=?", params)
        cur.execute("DELETE FROM shift_definitions WHERE id=? AND schedule_id=?", (shift_id, schedule_id))
        con.commit()
        return {"message": "Shift definition deleted successfully"}


# ---------------------- Training days ----------------------


@app.get("/schedules/{schedule_id}/training")
def list_training_days(schedule_id: int, current_user: Dict[str, Any] = Depends(require_user)):
    with connect() as con:
        cur = con.cursor()
        _get_visible_schedule(cur, schedule_id, current_user)
        days = cur.execute(
            "SELECT id, training_date FROM training_days WHERE schedule_id=? ORDER BY training_date",
            (schedule_id,),
        ).fetchall()
        pilots = cur.execute(
            """
            SELECT ta.training_day_id, ta.pilot_id AS id, u.first_name, u.last_name
            FROM training_assignments ta
            JOIN training_days td ON td.id = ta.training_day_id
            JOIN users u ON u.id = ta.pilot_id
            WHERE td.schedule_id = ?
            ORDER BY ta.assignment_order
            """,
            (schedule_id,),
        ).fetchall()
        by_day: Dict[int, List[Dict[str, Any]]] = {}
        for p in pilots:
            d = dict(p)
            by_day.setdefault(d.pop("training_day_id"), []).append(d)
        out = []
        for t in days:
            out.append({
                "id": t["id"],
                "training_date": t["training_date"],
                "training_name": "Training",
                "pilots": by_day.get(t["id"], []),
            })
        return {"trainingDays": out}


@app.post("/schedules/{schedule_id}/training")
def create_training_day(
    schedule_id: int,
    payload: Dict[str, Any],
    current_user: Dict[str, Any] = Depends(require_role("manager")),
):
    training_date = _required_date(payload.get("training_date"), "training_date")
    with connect() as con:
        cur = con.cursor()
        _get_schedule(cur, schedule_id)
        try:
            cur.execute(
                "INSERT INTO training_days(schedule_id, training_date) VALUES (?,?)",
                (schedule_id, training_date),
            )
        except sqlite3.IntegrityError:
            raise HTTPException(status_code=400, detail="A training day already exists on this date")
        training_id = cur.lastrowid
        con.commit()
        return {
            "message": "Training day created successfully",
            "trainingDay": {"id": training_id, "training_date": training_date},
        }


@app.delete("/schedules/{schedule_id}/training/{training_id}")
def delete_training_day(
    schedule_id: int,
    training_id: int,
    current_user: Dict[str, Any] = Depends(require_role("manager")),
):
    with connect() as con:
        cur = con.cursor()
        _get_training_day(cur, schedule_id, training_id)
        cur.execute("DELETE FROM draft_training_assignments WHERE training_day_id=?", (training_id,))
        cur.execute("DELETE FROM training_assignments WHERE training_day_id=?", (training_id,))
        cur.execute("DELETE FROM training_days WHERE id=? AND schedule_id=?", (training_id, schedule_id))
        con.commit()
        return {"message": "Training day deleted successfully"}


# ---------------------- Users & pilots ----------------------


def _new_user(cur, payload: Dict[str, Any], key: str) -> Dict[str, Any]:
    """Create a user keyed by ``key`` (``email`` or ``username``) and return it."""
    required = ["first_name", "last_name", "role", "password", key]
    if any(not strip_or_none(payload.get(k)) for k in required):
        raise HTTPException(status_code=400, detail="Missing required fields")
    role = payload["role"].strip().lower()
    if role not in ROLE_LABELS:
        raise HTTPException(status_code=400, detail="Invalid role")
    ident = payload[key].strip().lower()
    if cur.execute(f"SELECT id FROM users WHERE {key}=?", (ident,)).fetchone():
        raise HTTPException(status_code=400, detail=f"User with this {key} already exists")
    try:
        user_id = create_user(
            cur,
            password=payload["password"],
            role=role,
            username=payload.get("username"),
            email=payload.get("email"),
            first_name=payload["first_name"],
            last_name=payload["last_name"],
        )
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=400, detail="User already exists")
    return row_to_dict(cur.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id=?", (user_id,)).fetchone())


@app.get("/users")
def list_users(current_user: Dict[str, Any] = Depends(require_role("manager"))):
    with connect() as con:
        rows = con.execute(f"SELECT {USER_COLUMNS} FROM users ORDER BY last_name, first_name").fetchall()
        return rows_to_dicts(rows)


@app.post("/users", status_code=201)
def create_user_by_email(payload: Dict[str, Any], current_user: Dict[str, Any] = Depends(require_role("manager"))):
    with connect() as con:
        cur = con.cursor()
        user = _new_user(cur, payload, "email")
        con.commit()
        return user


@app.get("/users/pilots")
def list_assignable_pilots(current_user: Dict[str, Any] = Depends(require_user)):
    with connect() as con:
        rows = con.execute(
            """
            SELECT id, username, first_name, last_name, role, is_active
            FROM users
            WHERE role IN ('pilot', 'manager') AND is_active = 1
            ORDER BY first_name, last_name
            """
        ).fetchall()
        return {"pilots": rows_to_dicts(rows)}


@app.get("/pilots")
def list_pilots(current_user: Dict[str, Any] = Depends(require_role("manager"))):
    with connect() as con:
        rows = con.execute(f"SELECT {USER_COLUMNS} FROM users ORDER BY last_name, first_name").fetchall()
        return {"pilots": rows_to_dicts(rows)}


@app.post("/pilots", status_code=201)
def create_pilot(payload: Dict[str, Any], current_user: Dict[str, Any] = Depends(require_role("manager"))):
    with connect() as con:
        cur = con.cursor()
        user = _new_user(cur, payload, "username")
        con.commit()
        return user


@app.get("/pilots/{pilot_id}")
def get_pilot(pilot_id: int, current_user: Dict[str, Any] = Depends(require_role("manager"))):
    with connect() as con:
        r = con.execute(
            "SELECT id, username, first_name, last_name, email, is_active FROM users WHERE id=? AND role='pilot'",
            (pilot_id,),
        ).fetchone()
        if not r:
            raise HTTPException(status_code=404, detail="Pilot not found")
        return row_to_dict(r)


@app.put("/pilots/{pilot_id}")
def update_pilot(
    pilot_id: int,
    payload: Dict[str, Any],
    current_user: Dict[str, Any] = Depends(require_role("manager")),
):
    fields: Dict[str, Any] = {}
    for k in ["first_name", "last_name"]:
        if k in payload:
            v = strip_or_none(payload.get(k))
            if not v:
                raise HTTPException(status_code=400, detail=f"{k} is required")
            fields[k] = v
    if "is_active" in payload:
        fields["is_active"] = 1 if to_bool(payload.get("is_active")) else 0
    with connect() as con:
        cur = con.cursor()
        r = cur.execute("SELECT id FROM users WHERE id=? AND role='pilot'", (pilot_id,)).fetchone()
        if not r:
            raise HTTPException(status_code=404, detail="Pilot not found")
        fields.update(_email_update(cur, pilot_id, payload))
        if fields:
            sets = ", ".join([f"{k}=:{k}" for k in fields.keys()])
            try:
                cur.execute(f"UPDATE users SET {sets} WHERE id=:id", {**fields, "id": pilot_id})
            except sqlite3.IntegrityError:
                raise HTTPException(status_code=400, detail="User with this email already exists")
        updated = cur.execute(
            "SELECT id, username, first_name, last_name, email, is_active FROM users WHERE id=?",
            (pilot_id,),
        ).fetchone()
        con.commit()
        return row_to_dict(updated)


@app.delete("/pilots/{pilot_id}")
def delete_pilot(pilot_id: int, current_user: Dict[str, Any] = Depends(require_role("manager"))):
    if pilot_id == current_user["id"]:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    with connect() as con:
        cur = con.cursor()
        r = cur.execute("SELECT id, first_name, last_name FROM users WHERE id=?", (pilot_id,)).fetchone()
        if not r:
            raise HTTPException(status_code=404, detail="Pilot not found")
        cur.execute("DELETE FROM users WHERE id=?", (pilot_id,))
        con.commit()
        return {"message": "Pilot deleted successfully", "deletedPilot": dict(r)}


# ---------------------- Profile & notification preferences ----------------------


def _default_preferences() -> Dict[str, Any]:
    prefs = {
        key: {"enabled": True, "email": True, "inApp": True, "sms": False}
        for key, _ in PREFERENCE_CATEGORIES
    }
    prefs["shiftReminders"]["timing"] = {"hours24": True, "hours2": True, "minutes30": False}
    return prefs


@app.get("/user/profile")
def get_profile(current_user: Dict[str, Any] = Depends(require_user)):
    with connect() as con:
        cur = con.cursor()
        user = cur.execute("SELECT email, phone FROM users WHERE id=?", (current_user["id"],)).fetchone()
        stored = cur.execute(
            """
            SELECT category, enabled, email_enabled, inapp_enabled, sms_enabled
            FROM notification_preferences WHERE user_id=?
            """,
            (current_user["id"],),
        ).fetchall()
        timing = cur.execute(
            "SELECT hours_24, hours_2, minutes_30 FROM reminder_timings WHERE user_id=?",
            (current_user["id"],),
        ).fetchone()

    prefs = _default_preferences()
    db_to_key = {db_key: key for key, db_key in PREFERENCE_CATEGORIES}
    for p in stored:
        key = db_to_key.get(p["category"])
        if key is None:
            continue
        prefs[key].update({
            "enabled": bool(p["enabled"]),
            "email": bool(p["email_enabled"]),
            "inApp": bool(p["inapp_enabled"]),
            "sms": bool(p["sms_enabled"]),
        })
    if timing:
        prefs["shiftReminders"]["timing"] = {
            "hours24": bool(timing["hours_24"]),
            "hours2": bool(timing["hours_2"]),
            "minutes30": bool(timing["minutes_30"]),
        }
    return {
        "contactInfo": {"email": user["email"] or "", "phone": user["phone"] or ""},
        "preferences": prefs,
    }


@app.post("/user/profile")
def update_profile(payload: Dict[str, Any], current_user: Dict[str, Any] = Depends(require_user)):
    contact = payload.get("contactInfo") or {}
    prefs = payload.get("preferences")
    if not isinstance(prefs, dict) or not isinstance(contact, dict):
        raise HTTPException(status_code=400, detail="contactInfo and preferences are required")
    defaults = _default_preferences()
    user_id = current_user["id"]
    with connect() as con:
        cur = con.cursor()
        fields = _email_update(cur, user_id, contact)
        if "phone" in contact:
            fields["phone"] = strip_or_none(contact.get("phone"))
        if fields:
            sets = ", ".join([f"{k}=:{k}" for k in fields.keys()])
            try:
                cur.execute(f"UPDATE users SET {sets} WHERE id=:id", {**fields, "id": user_id})
            except sqlite3.IntegrityError:
                raise HTTPException(status_code=400, detail="User with this email already exists")
        saved = cur.execute("SELECT email, phone FROM users WHERE id=?", (user_id,)).fetchone()
        for key, db_key in PREFERENCE_CATEGORIES:
            p = prefs.get(key) or {}
            d = defaults[key]
            cur.execute(
                """
                INSERT INTO notification_preferences(user_id, category, enabled, email_enabled, inapp_enabled, sms_enabled, updated_at)
                VALUES (?,?,?,?,?,?, datetime('now'))
                ON CONFLICT(user_id, category) DO UPDATE SET
                  enabled=excluded.enabled,
                  email_enabled=excluded.email_enabled,
                  inapp_enabled=excluded.inapp_enabled,
                  sms_enabled=excluded.sms_enabled,
                  updated_at=datetime('now')
                """,
                (
                    user_id, db_key,
                    int(to_bool(p.get("enabled"), d["enabled"])),
                    int(to_bool(p.get("email"), d["email"])),
                    int(to_bool(p.get("inApp"), d["inApp"])),
                    int(to_bool(p.get("sms"), d["sms"])),
                ),
            )
        timing = (prefs.get("shiftReminders") or {}).get("timing")
        if isinstance(timing, dict):
            td = defaults["shiftReminders"]["timing"]
            cur.execute(
                """
                INSERT INTO reminder_timings(user_id, hours_24, hours_2, minutes_30, updated_at)
                VALUES (?,?,?,?, datetime('now'))
                ON CONFLICT(user_id) DO UPDATE SET
                  hours_24=excluded.hours_24,
                  hours_2=excluded.hours_2,
                  minutes_30=excluded.minutes_30,
                  updated_at=datetime('now')
                """,
                (
                    user_id,
                    int(to_bool(timing.get("hours24"), td["hours24"])),
                    int(to_bool(timing.get("hours2"), td["hours2"])),
                    int(to_bool(timing.get("minutes30"), td["minutes30"])),
                ),
            )
        con.commit()
    return {
        "message": "Profile updated successfully",
        "contactInfo": {"email": saved["email"] or "", "phone": saved["phone"] or ""},
        "preferences": prefs,
    }


# ---------------------- Push notifications ----------------------


@app.post("/push-subscription")
def save_push_subscription(payload: Dict[str, Any], current_user: Dict[str, Any] = Depends(require_user)):
    endpoint = strip_or_none(payload.get("endpoint"))
    keys = payload.get("keys") or {}
    p256dh = strip_or_none(keys.get("p256dh")) if isinstance(keys, dict) else None
    auth_key = strip_or_none(keys.get("auth")) if isinstance(keys, dict) else None
    if not endpoint or not p256dh or not auth_key:
        raise HTTPException(status_code=400, detail="endpoint and keys.p256dh/keys.auth are required")
    with connect() as con:
        con.execute(
            """
            INSERT INTO push_subscriptions(user_id, endpoint, p256dh, auth)
            VALUES (?,?,?,?)
            ON CONFLICT(endpoint) DO UPDATE SET
              user_id=excluded.user_id,
              p256dh=excluded.p256dh,
              auth=excluded.auth,
              updated_at=datetime('now')
            """,
            (current_user["id"], endpoint, p256dh, auth_key),
        )
        con.commit()
    return {"success": True}


@app.delete("/push-subscription")
def delete_push_subscription(payload: Dict[str, Any], current_user: Dict[str, Any] = Depends(require_user)):
    endpoint = strip_or_none(payload.get("endpoint"))
    if not endpoint:
        raise HTTPException(status_code=400, detail="endpoint is required")
    with connect() as con:
        con.execute(
            "DELETE FROM push_subscriptions WHERE endpoint=? AND user_id=?",
            (endpoint, current_user["id"]),
        )
        con.commit()
    return {"success": True}


@app.post("/send-notification")
def send_notification(payload: Dict[str, Any], current_user: Dict[str, Any] = Depends(require_role("manager"))):
    user_id = to_int_or_none(payload.get("userId"))
    title = strip_or_none(payload.get("title"))
    if user_id is None or not title:
        raise HTTPException(status_code=400, detail="Missing required fields")
    message = push.build_payload(title, payload.get("body") or "", payload.get("url") or "/")
    with connect() as con:
        cur = con.cursor()
        try:
            result = push.send_to_user(cur, user_id, message)
        except push.PushConfigError:
            logger.exception("Push notifications are not configured")
            raise HTTPException(status_code=500, detail="Push notifications are not configured")
        con.commit()
    if not result["total"]:
        return {"message": "No subscriptions found for user", "successful": 0, "failed": 0}
    return {
        "message": f"Sent {result['successful']} notifications, {result['failed']} failed",
        "successful": result["successful"],
        "failed": result["failed"],
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
