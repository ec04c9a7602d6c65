"""Draft/publish workflow for monthly schedule assignments.

Managers edit ``draft_*`` tables; pilots read the published tables. The first
read of a schedule's draft seeds it from the published rows, and publishing
replaces the published rows with the draft inside one write transaction while
bumping the schedule version.
"""
import logging
import sqlite3
from typing import Any, Dict, List, Optional

from .utils import row_to_dict, rows_to_dicts, slot_role

logger = logging.getLogger(__name__)

ASSIGNMENT_TYPES = {"shift", "training"}


class ScheduleNotFound(LookupError):
    pass


def _draft_counts(cur, schedule_id: int) -> Dict[str, int]:
    shifts = cur.execute(
        """
        SELECT COUNT(*) AS n
        FROM draft_shift_assignments dsa
        JOIN daily_shifts ds ON dsa.daily_shift_id = ds.id
        WHERE ds.schedule_id = ?
        """,
        (schedule_id,),
    ).fetchone()["n"]
    training = cur.execute(
        """
        SELECT COUNT(*) AS n
        FROM draft_training_assignments dta
        JOIN training_days td ON dta.training_day_id = td.id
        WHERE td.schedule_id = ?
        """,
        (schedule_id,),
    ).fetchone()["n"]
    return {"shift": int(shifts), "training": int(training)}


def seed_draft_from_published(cur, schedule_id: int) -> Dict[str, int]:
    cur.execute(
        """
        INSERT INTO draft_shift_assignments (daily_shift_id, pilot_id, assignment_order, assigned_by, assigned_at)
        SELECT sa.daily_shift_id, sa.pilot_id, sa.assignment_order, sa.assigned_by, sa.assigned_at
        FROM shift_assignments sa
        JOIN daily_shifts ds ON sa.daily_shift_id = ds.id
        WHERE ds.schedule_id = ?
        """,
        (schedule_id,),
    )
    shifts = cur.rowcount
    cur.execute(
        """
        INSERT INTO draft_training_assignments (training_day_id, pilot_id, assignment_order, assigned_by, assigned_at)
        SELECT ta.training_day_id, ta.pilot_id, ta.assignment_order, ta.assigned_by, ta.assigned_at
        FROM training_assignments ta
        JOIN training_days td ON ta.training_day_id = td.id
        WHERE td.schedule_id = ?
        """,
        (schedule_id,),
    )
    return {"shift": shifts, "training": cur.rowcount}


def load_draft(con: sqlite3.Connection, schedule_id: int) -> Dict[str, List[Dict[str, Any]]]:
    """Return the draft assignments of a schedule, seeding them on first use."""
    cur = con.cursor()
    counts = _draft_counts(cur, schedule_id)
    if counts["shift"] == 0 and counts["training"] == 0:
        seeded = seed_draft_from_published(cur, schedule_id)
        con.commit()
        if seeded["shift"] or seeded["training"]:
            logger.info(
                "Seeded draft for schedule %s from published data (%s shift, %s training)",
                schedule_id, seeded["shift"], seeded["training"],
            )

    shift_rows = cur.execute(
        """
        SELECT
          ds.shift_date,
          ds.shift_definition_id,
          sd.shift_letter,
          dsa.assignment_order,
          dsa.pilot_id,
          u.first_name,
          u.last_name
        FROM daily_shifts ds
        JOIN draft_shift_assignments dsa ON ds.id = dsa.daily_shift_id
        JOIN shift_definitions sd ON sd.id = ds.shift_definition_id
        JOIN users u ON dsa.pilot_id = u.id
        WHERE ds.schedule_id = ?
        ORDER BY ds.shift_date, sd.shift_letter, dsa.assignment_order
        """,
        (schedule_id,),
    ).fetchall()
    training_rows = cur.execute(
        """
        SELECT
          td.training_date,
          dta.training_day_id,
          dta.assignment_order,
          dta.pilot_id,
          u.first_name,
          u.last_name
        FROM draft_training_assignments dta
        JOIN training_days td ON dta.training_day_id = td.id
        JOIN users u ON dta.pilot_id = u.id
        WHERE td.schedule_id = ?
        ORDER BY td.training_date, dta.assignment_order
        """,
        (schedule_id,),
    ).fetchall()

    shift_assignments = rows_to_dicts(shift_rows)
    for a in shift_assignments:
        a["role"] = slot_role(a["assignment_order"])
    return {
        "shiftAssignments": shift_assignments,
        "trainingAssignments": rows_to_dicts(training_rows),
    }


def find_daily_shift(cur, schedule_id: int, shift_definition_id: int, shift_date: str) -> Optional[int]:
    r = cur.execute(
        "SELECT id FROM daily_shifts WHERE schedule_id=? AND shift_definition_id=? AND shift_date=?",
        (schedule_id, shift_definition_id, shift_date),
    ).fetchone()
    return r["id"] if r else None


def ensure_daily_shift(cur, schedule_id: int, shift_definition_id: int, shift_date: str) -> int:
    daily_shift_id = find_daily_shift(cur, schedule_id, shift_definition_id, shift_date)
    if daily_shift_id is not None:
        return daily_shift_id
    cur.execute(
        "INSERT INTO daily_shifts (schedule_id, shift_definition_id, shift_date) VALUES (?,?,?)",
        (schedule_id, shift_definition_id, shift_date),
    )
    return cur.lastrowid


def upsert_draft_shift(cur, daily_shift_id: int, slot: int, pilot_id: int, assigned_by: Optional[int]) -> None:
    cur.execute(
        """
        INSERT INTO draft_shift_assignments (daily_shift_id, pilot_id, assignment_order, assigned_by, assigned_at)
        VALUES (?,?,?,?, datetime('now'))
        ON CONFLICT(daily_shift_id, assignment_order) DO UPDATE SET
          pilot_id=excluded.pilot_id,
          assigned_by=excluded.assigned_by,
          assigned_at=datetime('now')
        """,
        (daily_shift_id, pilot_id, slot, assigned_by),
    )


def upsert_draft_training(cur, training_day_id: int, slot: int, pilot_id: int, assigned_by: Optional[int]) -> None:
    cur.execute(
        """
        INSERT INTO draft_training_assignments (training_day_id, pilot_id, assignment_order, assigned_by, assigned_at)
        VALUES (?,?,?,?, datetime('now'))
        ON CONFLICT(training_day_id, assignment_order) DO UPDATE SET
          pilot_id=excluded.pilot_id,
          assigned_by=excluded.assigned_by,
          assigned_at=datetime('now')
        """,
        (training_day_id, pilot_id, slot, assigned_by),
    )


def delete_draft_shift(cur, daily_shift_id: int, slot: int) -> int:
    cur.execute(
        "DELETE FROM draft_shift_assignments WHERE daily_shift_id=? AND assignment_order=?",
        (daily_shift_id, slot),
    )
    return cur.rowcount


def delete_draft_training(cur, training_day_id: int, slot: int) -> int:
    cur.execute(
        "DELETE FROM draft_training_assignments WHERE training_day_id=? AND assignment_order=?",
        (training_day_id, slot),
    )
    return cur.rowcount


def publish_schedule(con: sqlite3.Connection, schedule_id: int) -> Dict[str, Any]:
    """Copy the draft into the published tables and bump the version.

    Runs under ``BEGIN IMMEDIATE``: the version is read while holding the
    write lock, so concurrent publishers serialize. Any failure rolls back
    every statement.
    """
    cur = con.cursor()
    cur.execute("BEGIN IMMEDIATE")
    try:
        sched = cur.execute(
            "SELECT id, is_published, version FROM monthly_schedules WHERE id=?",
            (schedule_id,),
        ).fetchone()
        if not sched:
            raise ScheduleNotFound(schedule_id)
        new_version = sched["version"] + 1 if sched["is_published"] else 1

        cur.execute(
            """
            DELETE FROM shift_assignments
            WHERE daily_shift_id IN (SELECT id FROM daily_shifts WHERE schedule_id = ?)
            """,
            (schedule_id,),
        )
        cur.execute(
            """
            DELETE FROM training_assignments
            WHERE training_day_id IN (SELECT id FROM training_days WHERE schedule_id = ?)
            """,
            (schedule_id,),
        )
        cur.execute(
            """
            INSERT INTO shift_assignments (daily_shift_id, pilot_id, assignment_order, assigned_by, assigned_at)
            SELECT dsa.daily_shift_id, dsa.pilot_id, dsa.assignment_order, dsa.assigned_by, dsa.assigned_at
            FROM draft_shift_assignments dsa
            JOIN daily_shifts ds ON dsa.daily_shift_id = ds.id
            WHERE ds.schedule_id = ?
            """,
            (schedule_id,),
        )
        shift_rows = cur.rowcount
        cur.execute(
            """
            INSERT INTO training_assignments (training_day_id, pilot_id, assignment_order, assigned_by, assigned_at)
            SELECT dta.training_day_id, dta.pilot_id, dta.assignment_order, dta.assigned_by, dta.assigned_at
            FROM draft_training_assignments dta
            JOIN training_days td ON dta.training_day_id = td.id
            WHERE td.schedule_id = ?
            """,
            (schedule_id,),
        )
        training_rows = cur.rowcount

        cur.execute(
            "UPDATE monthly_schedules SET is_published=1, version=? WHERE id=?",
            (new_version, schedule_id),
        )
        row = cur.execute(
            "SELECT id, month, year, shifts_per_day, is_published, version FROM monthly_schedules WHERE id=?",
            (schedule_id,),
        ).fetchone()
        con.commit()
    except Exception:
        con.rollback()
        raise

    logger.info(
        "Published schedule %s as version %s (%s shift, %s training assignments)",
        schedule_id, new_version, shift_rows, training_rows,
    )
    return {
        "schedule": row_to_dict(row),
        "version": new_version,
        "shift_assignments": shift_rows,
        "training_assignments": training_rows,
    }


def load_published_shifts(cur, schedule_id: int) -> List[Dict[str, Any]]:
    rows = cur.execute(
        """
        SELECT shift_date, shift_definition_id, shift_letter, assignment_order, pilot_id, first_name, last_name
        FROM v_published_shift_assignments
        WHERE schedule_id = ?
        ORDER BY shift_date, shift_letter, assignment_order
        """,
        (schedule_id,),
    ).fetchall()
    out = rows_to_dicts(rows)
    for a in out:
        a["role"] = slot_role(a["assignment_order"])
    return out
