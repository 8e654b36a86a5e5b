# src/taskpilot/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import threading
import time
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from typing import Any

from ..core.errors import UpstreamError
from .task_models import (
    Employee,
    Invitation,
    InvitationStatus,
    Priority,
    Task,
    TaskStatus,
    TaskUpdate,
)

logger = logging.getLogger(__name__)

# Task fields that may appear in a conditional-update patch -> column name.
_TASK_COLUMNS = {
    "title": "title",
    "description": "description",
    "required_skills": "required_skills",
    "priority": "priority",
    "status": "status",
    "progress": "progress",
    "assigned_to": "assigned_to",
    "deadline": "deadline",
    "estimated_hours": "estimated_hours",
    "complexity_multiplier": "complexity_multiplier",
    "updated_at": "updated_at",
    "started_at": "started_at",
    "completed_at": "completed_at",
}

_INVITATION_COLUMNS = {
    "status": "status",
    "rejection_reason": "rejection_reason",
    "responded_at": "responded_at",
}


class TaskStore:
    """
    SQLite store for employees, tasks, invitations and task updates.

    The schema is intentionally simple and migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    - inside `atomic()` the calling thread reuses one connection holding a
      BEGIN IMMEDIATE transaction, so conditional writes from concurrent callers
      are serialized and the loser sees the winner's status
    """

    def __init__(self, db_path: str | Path = "taskpilot.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except UpstreamError:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    def close(self) -> None:
        """
        Fold the WAL back into the main database file on shutdown.

        Connections are per call, so there is nothing else to release.
        """
        try:
            with self._conn() as conn:
                conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
        except UpstreamError:
            logger.warning("WAL checkpoint failed on close db=%s", self._db_path, exc_info=True)
            return
        logger.debug("TaskStore closed db=%s", self._db_path)

    # ---- low-level helpers ----

    def _open(self) -> sqlite3.Connection:
        # Autocommit mode; transactions are explicit (see atomic()).
        conn = sqlite3.connect(str(self._db_path), timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextlib.contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        active = getattr(self._local, "conn", None)
        try:
            if active is not None:
                yield active
                return
            conn = self._open()
            try:
                yield conn
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.exception("TaskStore query failed db=%s", self._db_path)
            raise UpstreamError(f"Task storage failed: {e}") from e

    @contextlib.contextmanager
    def atomic(self) -> Iterator[None]:
        """
        Run the enclosed store calls in one transaction.

        Commits on normal exit, rolls back if the block raises. Nested use joins
        the outer transaction.
        """
        if getattr(self._local, "conn", None) is not None:
            yield
            return

        try:
            conn = self._open()
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            logger.exception("TaskStore could not start a transaction db=%s", self._db_path)
            raise UpstreamError(f"Task storage failed: {e}") from e

        self._local.conn = conn
        try:
            yield
        except BaseException:
            with contextlib.suppress(sqlite3.Error):
                conn.execute("ROLLBACK")
            raise
        else:
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                with contextlib.suppress(sqlite3.Error):
                    conn.execute("ROLLBACK")
                raise UpstreamError(f"Task storage commit failed: {e}") from e
        finally:
            self._local.conn = None
            conn.close()

    def _ensure_schema(self) -> None:
        with self._conn() as conn:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS employees (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL DEFAULT '',
                    skills TEXT NOT NULL DEFAULT '[]',
                    department TEXT NOT NULL DEFAULT '',
                    designation TEXT NOT NULL DEFAULT '',
                    current_workload INTEGER NOT NULL DEFAULT 0,
                    performance_score REAL NOT NULL DEFAULT 0,
                    availability INTEGER NOT NULL DEFAULT 1,
                    hourly_rate REAL NOT NULL DEFAULT 0,
                    tasks_completed INTEGER NOT NULL DEFAULT 0,
                    updated_at REAL NOT NULL DEFAULT 0
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    required_skills TEXT NOT NULL DEFAULT '[]',
                    priority TEXT NOT NULL DEFAULT 'medium',
                    status TEXT NOT NULL DEFAULT 'unassigned',
                    progress INTEGER NOT NULL DEFAULT 0,
                    assigned_to TEXT,
                    created_by TEXT NOT NULL,
                    deadline REAL,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS invitations (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(id),
                    to_employee TEXT NOT NULL,
                    from_user TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    rejection_reason TEXT,
                    created_at REAL NOT NULL,
                    responded_at REAL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS task_updates (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id TEXT NOT NULL REFERENCES tasks(id),
                    author_id TEXT NOT NULL,
                    note TEXT,
                    progress INTEGER NOT NULL,
                    hours_logged REAL,
                    created_at REAL NOT NULL
                )
                """
            )

            # Migrations (safe): add missing task columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("estimated_hours", "REAL")
            add_col("complexity_multiplier", "REAL NOT NULL DEFAULT 1.0")
            add_col("started_at", "REAL")
            add_col("completed_at", "REAL")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_assignee ON tasks(assigned_to, created_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_creator ON tasks(created_by, created_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_invitations_task ON invitations(task_id, created_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_updates_task ON task_updates(task_id, id)")

    @staticmethod
    def _skills_to_str(skills: Iterable[str]) -> str:
        return json.dumps(sorted(skills), ensure_ascii=False)

    @staticmethod
    def _str_to_skills(s: str | None) -> frozenset[str]:
        if not s:
            return frozenset()
        try:
            val = json.loads(s)
        except ValueError:
            logger.warning("Unreadable skills column %r; treating as empty.", s)
            return frozenset()
        return frozenset(str(v) for v in val) if isinstance(val, list) else frozenset()

    @staticmethod
    def _to_db(value: Any) -> Any:
        if isinstance(value, (TaskStatus, InvitationStatus, Priority)):
            return value.value
        if isinstance(value, (set, frozenset)):
            return TaskStore._skills_to_str(value)
        return value

    def _row_to_employee(self, row: sqlite3.Row) -> Employee:
        return Employee(
            id=str(row["id"]),
            name=str(row["name"] or ""),
            skills=self._str_to_skills(row["skills"]),
            department=str(row["department"] or ""),
            designation=str(row["designation"] or ""),
            current_workload=int(row["current_workload"] or 0),
            performance_score=float(row["performance_score"] or 0.0),
            availability=bool(row["availability"]),
            hourly_rate=float(row["hourly_rate"] or 0.0),
            tasks_completed=int(row["tasks_completed"] or 0),
        )

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=str(row["id"]),
            title=str(row["title"] or ""),
            description=str(row["description"] or ""),
            created_by=str(row["created_by"]),
            status=TaskStatus.from_db(row["status"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            required_skills=self._str_to_skills(row["required_skills"]),
            priority=Priority(row["priority"] or Priority.MEDIUM.value),
            progress=int(row["progress"] or 0),
            assigned_to=row["assigned_to"],
            deadline=float(row["deadline"]) if row["deadline"] is not None else None,
            estimated_hours=float(row["estimated_hours"]) if row["estimated_hours"] is not None else None,
            complexity_multiplier=float(row["complexity_multiplier"] or 1.0),
            started_at=float(row["started_at"]) if row["started_at"] is not None else None,
            completed_at=float(row["completed_at"]) if row["completed_at"] is not None else None,
        )

    @staticmethod
    def _row_to_invitation(row: sqlite3.Row) -> Invitation:
        return Invitation(
            id=str(row["id"]),
            task_id=str(row["task_id"]),
            to_employee=str(row["to_employee"]),
            from_user=str(row["from_user"]),
            status=InvitationStatus.from_db(row["status"]),
            created_at=float(row["created_at"] or 0.0),
            rejection_reason=row["rejection_reason"],
            responded_at=float(row["responded_at"]) if row["responded_at"] is not None else None,
        )

    @staticmethod
    def _row_to_update(row: sqlite3.Row) -> TaskUpdate:
        return TaskUpdate(
            id=int(row["id"]),
            task_id=str(row["task_id"]),
            author_id=str(row["author_id"]),
            progress=int(row["progress"]),
            created_at=float(row["created_at"]),
            note=row["note"],
            hours_logged=float(row["hours_logged"]) if row["hours_logged"] is not None else None,
        )

    def _conditional_update(
        self,
        table: str,
        columns: Mapping[str, str],
        record_id: str,
        expected: str,
        patch: Mapping[str, Any],
    ) -> bool:
        fields: list[str] = []
        params: list[Any] = []
        for key, value in patch.items():
            col = columns.get(key)
            if col is None:
                raise ValueError(f"{table}: field {key!r} cannot be patched")
            fields.append(f"{col} = ?")
            params.append(self._to_db(value))
        if not fields:
            raise ValueError("empty patch")

        params.extend([record_id, expected])
        sql = f"UPDATE {table} SET {', '.join(fields)} WHERE id = ? AND status = ?"

        with self._conn() as conn:
            cur = conn.execute(sql, params)
            return cur.rowcount == 1

    # ---- employees ----

    def upsert_employee(self, employee: Employee) -> None:
        """Insert or replace an employee profile (profile edits live outside the engine)."""
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO employees(
                    id, name, skills, department, designation, current_workload,
                    performance_score, availability, hourly_rate, tasks_completed, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    skills = excluded.skills,
                    department = excluded.department,
                    designation = excluded.designation,
                    current_workload = excluded.current_workload,
                    performance_score = excluded.performance_score,
                    availability = excluded.availability,
                    hourly_rate = excluded.hourly_rate,
                    tasks_completed = excluded.tasks_completed,
                    updated_at = excluded.updated_at
                """,
                (
                    employee.id,
                    employee.name,
                    self._skills_to_str(employee.skills),
                    employee.department,
                    employee.designation,
                    int(employee.current_workload),
                    float(max(0.0, min(1.0, employee.performance_score))),
                    1 if employee.availability else 0,
                    float(employee.hourly_rate),
                    int(employee.tasks_completed),
                    time.time(),
                ),
            )
        logger.debug("Employee upserted id=%s skills=%s", employee.id, sorted(employee.skills))

    def get_employee(self, employee_id: str) -> Employee | None:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM employees WHERE id = ?", (employee_id,)).fetchone()
            return self._row_to_employee(row) if row else None

    def list_employees(self, *, available_only: bool = False) -> list[Employee]:
        sql = "SELECT * FROM employees"
        if available_only:
            sql += " WHERE availability = 1"
        sql += " ORDER BY id ASC"
        with self._conn() as conn:
            return [self._row_to_employee(r) for r in conn.execute(sql).fetchall()]

    def adjust_employee_stats(
        self,
        employee_id: str,
        *,
        workload_delta: int = 0,
        completed_delta: int = 0,
    ) -> None:
        if not workload_delta and not completed_delta:
            return
        with self._conn() as conn:
            conn.execute(
                """
                UPDATE employees
                SET current_workload = MAX(0, current_workload + ?),
                    tasks_completed = MAX(0, tasks_completed + ?),
                    updated_at = ?
                WHERE id = ?
                """,
                (int(workload_delta), int(completed_delta), time.time(), employee_id),
            )

    # ---- tasks ----

    def count_tasks(self) -> int:
        with self._conn() as conn:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)

    def create_task(self, task: Task) -> None:
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO tasks(
                    id, title, description, required_skills, priority, status, progress,
                    assigned_to, created_by, deadline, created_at, updated_at,
                    estimated_hours, complexity_multiplier, started_at, completed_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.id,
                    task.title,
                    task.description,
                    self._skills_to_str(task.required_skills),
                    task.priority.value,
                    task.status.value,
                    int(task.progress),
                    task.assigned_to,
                    task.created_by,
                    task.deadline,
                    task.created_at,
                    task.updated_at,
                    task.estimated_hours,
                    float(task.complexity_multiplier),
                    task.started_at,
                    task.completed_at,
                ),
            )
        logger.debug("Task row inserted id=%s status=%s", task.id, task.status.value)

    def get_task(self, task_id: str) -> Task | None:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            return self._row_to_task(row) if row else None

    def conditional_update_task(
        self,
        task_id: str,
        *,
        expected: TaskStatus,
        patch: Mapping[str, Any],
    ) -> bool:
        """
        Compare-and-swap on task status.

        Applies `patch` only if the row's status is still `expected`.
        Returns True if this caller's write landed.
        """
        ok = self._conditional_update("tasks", _TASK_COLUMNS, task_id, expected.value, patch)
        if not ok:
            logger.debug("Conditional task update lost id=%s expected=%s", task_id, expected.value)
        return ok

    def list_tasks_by_assignee(self, user_id: str) -> list[Task]:
        """Tasks currently assigned to `user_id`, most recent first."""
        if not user_id:
            return []
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE assigned_to = ?
                ORDER BY created_at DESC, id ASC
                """,
                (user_id,),
            ).fetchall()
            return [self._row_to_task(r) for r in rows]

    def list_tasks_by_creator(self, user_id: str, *, status: TaskStatus | None = None) -> list[Task]:
        """Tasks created by `user_id`, most recent first, optionally filtered by status."""
        if not user_id:
            return []
        sql = "SELECT * FROM tasks WHERE created_by = ?"
        params: list[Any] = [user_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        sql += " ORDER BY created_at DESC, id ASC"
        with self._conn() as conn:
            rows = conn.execute(sql, params).fetchall()
            return [self._row_to_task(r) for r in rows]

    # ---- invitations ----

    def create_invitation(self, invitation: Invitation) -> None:
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO invitations(
                    id, task_id, to_employee, from_user, status,
                    rejection_reason, created_at, responded_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    invitation.id,
                    invitation.task_id,
                    invitation.to_employee,
                    invitation.from_user,
                    invitation.status.value,
                    invitation.rejection_reason,
                    invitation.created_at,
                    invitation.responded_at,
                ),
            )

    def get_latest_invitation(self, task_id: str) -> Invitation | None:
        with self._conn() as conn:
            row = conn.execute(
                """
                SELECT *
                FROM invitations
                WHERE task_id = ?
                ORDER BY created_at DESC, rowid DESC
                    LIMIT 1
                """,
                (task_id,),
            ).fetchone()
            return self._row_to_invitation(row) if row else None

    def conditional_update_invitation(
        self,
        invitation_id: str,
        *,
        expected: InvitationStatus,
        patch: Mapping[str, Any],
    ) -> bool:
        return self._conditional_update(
            "invitations", _INVITATION_COLUMNS, invitation_id, expected.value, patch
        )

    # ---- task updates ----

    def append_task_update(self, update: TaskUpdate) -> int:
        with self._conn() as conn:
            cur = conn.execute(
                """
                INSERT INTO task_updates(task_id, author_id, note, progress, hours_logged, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    update.task_id,
                    update.author_id,
                    update.note,
                    int(update.progress),
                    update.hours_logged,
                    update.created_at,
                ),
            )
            rowid = cur.lastrowid
            if rowid is None:
                raise UpstreamError("SQLite did not return lastrowid for task_updates insert")
            return int(rowid)

    def list_task_updates(self, task_id: str, limit: int = 50) -> list[TaskUpdate]:
        """Updates for one task, newest first."""
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM task_updates
                WHERE task_id = ?
                ORDER BY id DESC
                    LIMIT ?
                """,
                (task_id, int(limit)),
            ).fetchall()
            return [self._row_to_update(r) for r in rows]

    def sum_hours_logged(self, task_id: str) -> float:
        """Total hours logged across every update of one task."""
        with self._conn() as conn:
            (total,) = conn.execute(
                "SELECT COALESCE(SUM(hours_logged), 0) FROM task_updates WHERE task_id = ?",
                (task_id,),
            ).fetchone()
            return float(total)
