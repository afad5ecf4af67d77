"""
State repository for CodeBattle.

The contest, the problem bank, the teams and the submission history live in
one authoritative store. Two backends implement the same interface: a flat
JSON file for local development and single-machine events, and DuckDB for a
relational store with atomic SQL updates.
"""

import copy
import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import duckdb

from ..models.models import (
    ContestState, ContestStatus, Problem, Submission, Team, clamp_score
)
from ..utils.logger_config import get_logger
from .errors import NotFoundError, PreconditionError, StorageUnavailable

logger = get_logger("storage")

# Team attributes a partial upsert may name
TEAM_FIELDS = (
    "name", "password", "members", "assigned_problem_id",
    "total_score", "last_submission_time", "violations"
)

# Contest keys accepted by upsert_contest, in wire format
CONTEST_KEYS = ("status", "startTime", "durationMinutes")


def _check_team_fields(fields: Optional[Iterable[str]]) -> Optional[List[str]]:
    if fields is None:
        return None
    fields = list(fields)
    unknown = [f for f in fields if f not in TEAM_FIELDS]
    if unknown:
        raise ValueError(f"Unknown team fields: {unknown}")
    return fields


def _contest_value(key: str, value: Any) -> Any:
    if value is None:
        return None
    if key == "status":
        return ContestStatus(getattr(value, "value", value)).value
    return int(value)


class StateRepository(ABC):
    """Atomic operations over the shared contest state"""

    @abstractmethod
    def get_state(self) -> Dict[str, Any]:
        """Return {"contest": ContestState, "teams": [Team], "submissions": [Submission]}"""

    def get_contest(self) -> ContestState:
        return self.get_state()["contest"]

    def list_teams(self) -> List[Team]:
        return self.get_state()["teams"]

    def get_team(self, team_id: str) -> Optional[Team]:
        for team in self.list_teams():
            if team.id == team_id:
                return team
        return None

    def list_submissions(self, team_id: Optional[str] = None) -> List[Submission]:
        submissions = self.get_state()["submissions"]
        if team_id is None:
            return submissions
        return [s for s in submissions if s.team_id == team_id]

    @abstractmethod
    def upsert_team(self, team: Team, fields: Optional[Iterable[str]] = None) -> Team:
        """
        Insert or replace a team.

        With ``fields`` set, an existing record is only updated in those
        attributes; the rest of the stored record wins over the caller's copy.
        """

    @abstractmethod
    def delete_team(self, team_id: str) -> None:
        pass

    @abstractmethod
    def upsert_contest(self, partial: Dict[str, Any]) -> None:
        """Merge ``status``/``startTime``/``durationMinutes``; None clears a key"""

    @abstractmethod
    def upsert_problem(self, problem: Problem) -> Problem:
        pass

    @abstractmethod
    def delete_problem(self, problem_id: str) -> None:
        pass

    @abstractmethod
    def append_submission(self, submission: Submission) -> Submission:
        """Append to history and fold the score into the team (best score wins)"""

    @abstractmethod
    def increment_violation(self, team_id: str) -> None:
        pass

    @abstractmethod
    def begin_contest(self, partial: Dict[str, Any], draw: Callable[[List[Problem]], str]) -> Dict[str, str]:
        """
        Apply the start-of-contest effects as one mutation.

        Fails with PreconditionError unless the contest is LOCKED. ``draw``
        is called once per stored team, in order, with the stored problem
        bank and returns that team's problem id. Every team's score and
        violations are zeroed and the history is cleared. Returns the
        assignments made.
        """

    @abstractmethod
    def finish_contest(self) -> ContestStatus:
        """Move ACTIVE to FINISHED in one step; any other status is left alone. Returns the status found."""

    @abstractmethod
    def reset_all(self) -> None:
        """Clear teams and submissions, force LOCKED, keep the problem bank"""

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def empty_state() -> Dict[str, Any]:
    return {
        "teams": [],
        "contest": {"status": ContestStatus.LOCKED.value, "durationMinutes": 60, "problemBank": []},
        "submissions": []
    }


class JSONFileStorage(StateRepository):
    """
    Flat-file store keeping the whole state as one JSON document.

    A single lock serializes every mutation. Each mutation edits a copy of
    the state, writes it through a temporary file and ``os.replace``, and
    only then swaps it in. ``path=None`` keeps the
    state in memory only.
    """

    def __init__(self, path: Optional[str] = "data/data.json", initial: Optional[Dict[str, Any]] = None):
        self.path = Path(path) if path else None
        self._lock = threading.RLock()
        if initial is not None:
            self._data = self._normalize(copy.deepcopy(initial))
        else:
            self._data = self._load()
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        logger.debug(f"JSON storage ready at {self.path or '<memory>'}")

    def _normalize(self, data: Dict[str, Any]) -> Dict[str, Any]:
        base = empty_state()
        base["teams"] = list(data.get("teams") or [])
        base["submissions"] = list(data.get("submissions") or [])
        contest = data.get("contest") or {}
        base["contest"].update({k: v for k, v in contest.items() if k in CONTEST_KEYS})
        base["contest"]["problemBank"] = list(contest.get("problemBank") or [])
        for key in [k for k, v in base["contest"].items() if v is None]:
            del base["contest"][key]
        return base

    def _load(self) -> Dict[str, Any]:
        if self.path is None or not self.path.exists():
            return empty_state()
        try:
            text = self.path.read_text(encoding="utf-8")
            if not text.strip():
                return empty_state()
            return self._normalize(json.loads(text))
        except (OSError, ValueError) as e:
            logger.error(f"Local DB read error for {self.path}: {e}")
            return empty_state()

    def _save(self, data: Dict[str, Any]) -> None:
        if self.path is None:
            return
        try:
            fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".state-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Local DB save error for {self.path}: {e}")
            raise StorageUnavailable(f"Failed to write state file {self.path}: {e}") from e

    @contextmanager
    def _mutation(self):
        """
        Yield a working copy of the state. The copy becomes the live state
        only once it is on disk; any error leaves the live state untouched.
        """
        with self._lock:
            draft = copy.deepcopy(self._data)
            yield draft
            self._save(draft)
            self._data = draft

    @staticmethod
    def _find_team(data: Dict[str, Any], team_id: str) -> Optional[Dict[str, Any]]:
        for team in data["teams"]:
            if team.get("id") == team_id:
                return team
        return None

    def snapshot(self) -> Dict[str, Any]:
        """Raw JSON-ready copy of the whole state"""
        with self._lock:
            return copy.deepcopy(self._data)

    def replace(self, data: Dict[str, Any]) -> None:
        """Overwrite the whole state (used by the sync client's local snapshot)"""
        normalized = self._normalize(copy.deepcopy(data))
        with self._lock:
            self._save(normalized)
            self._data = normalized

    def get_state(self) -> Dict[str, Any]:
        with self._lock:
            data = copy.deepcopy(self._data)
        return {
            "contest": ContestState.from_dict(data["contest"]),
            "teams": [Team.from_dict(t) for t in data["teams"]],
            "submissions": [Submission.from_dict(s) for s in data["submissions"]]
        }

    def upsert_team(self, team: Team, fields: Optional[Iterable[str]] = None) -> Team:
        fields = _check_team_fields(fields)
        with self._mutation() as data:
            existing = self._find_team(data, team.id)
            if existing is None or fields is None:
                record = team.to_dict()
            else:
                merged = Team.from_dict(existing)
                for name in fields:
                    setattr(merged, name, getattr(team, name))
                record = merged.to_dict()
            if existing is None:
                data["teams"].append(record)
            else:
                data["teams"][data["teams"].index(existing)] = record
        return Team.from_dict(record)

    def delete_team(self, team_id: str) -> None:
        with self._mutation() as data:
            data["teams"] = [t for t in data["teams"] if t.get("id") != team_id]

    def upsert_contest(self, partial: Dict[str, Any]) -> None:
        with self._mutation() as data:
            contest = data["contest"]
            for key in CONTEST_KEYS:
                if key not in partial:
                    continue
                value = _contest_value(key, partial[key])
                if value is None:
                    contest.pop(key, None)
                else:
                    contest[key] = value

    def upsert_problem(self, problem: Problem) -> Problem:
        record = problem.to_dict()
        with self._mutation() as data:
            bank = data["contest"]["problemBank"]
            for index, existing in enumerate(bank):
                if existing.get("id") == problem.id:
                    bank[index] = record
                    break
            else:
                bank.append(record)
        return Problem.from_dict(record)

    def delete_problem(self, problem_id: str) -> None:
        with self._mutation() as data:
            bank = data["contest"]["problemBank"]
            data["contest"]["problemBank"] = [p for p in bank if p.get("id") != problem_id]

    def append_submission(self, submission: Submission) -> Submission:
        record = submission.to_dict()
        with self._mutation() as data:
            data["submissions"].append(record)
            team = self._find_team(data, submission.team_id)
            if team is not None:
                team["totalScore"] = max(int(team.get("totalScore") or 0), clamp_score(submission.score))
                team["lastSubmissionTime"] = submission.timestamp
            else:
                logger.warning(f"Submission {submission.id} recorded for unknown team {submission.team_id}")
        return Submission.from_dict(record)

    def increment_violation(self, team_id: str) -> None:
        with self._mutation() as data:
            team = self._find_team(data, team_id)
            if team is None:
                raise NotFoundError(f"Team {team_id} not found")
            team["violations"] = int(team.get("violations") or 0) + 1

    def begin_contest(self, partial: Dict[str, Any], draw: Callable[[List[Problem]], str]) -> Dict[str, str]:
        assignments: Dict[str, str] = {}
        with self._mutation() as data:
            contest = data["contest"]
            status = contest.get("status", ContestStatus.LOCKED.value)
            if status != ContestStatus.LOCKED.value:
                raise PreconditionError(f"Contest can only start from LOCKED (status: {status})")
            bank = [Problem.from_dict(p) for p in contest["problemBank"]]
            for team in data["teams"]:
                assignments[team["id"]] = team["assignedProblemId"] = draw(bank)
                team["totalScore"] = 0
                team["violations"] = 0
            data["submissions"] = []
            for key in CONTEST_KEYS:
                if key in partial:
                    contest[key] = _contest_value(key, partial[key])
        return assignments

    def finish_contest(self) -> ContestStatus:
        with self._mutation() as data:
            contest = data["contest"]
            found = ContestStatus(contest.get("status", ContestStatus.LOCKED.value))
            if found == ContestStatus.ACTIVE:
                contest["status"] = ContestStatus.FINISHED.value
        return found

    def reset_all(self) -> None:
        with self._mutation() as data:
            contest = data["contest"]
            contest["status"] = ContestStatus.LOCKED.value
            contest.pop("startTime", None)
            data["teams"] = []
            data["submissions"] = []


class DuckDBStorage(StateRepository):
    """
    DuckDB-backed store with the relational layout of the production database.

    Counters are changed with single UPDATE statements and every mutation runs
    inside one transaction, serialized by a process-wide writer lock.
    """

    def __init__(self, db_path: str = "data/codebattle.duckdb", default_duration: int = 60):
        logger.info(f"Initializing DuckDB storage at {db_path}")
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._root = duckdb.connect(db_path)
        except duckdb.Error as e:
            raise StorageUnavailable(f"Cannot open DuckDB database {db_path}: {e}") from e
        self._thread_local = threading.local()
        self._conn_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._create_schema(default_duration)

    def _get_conn(self) -> duckdb.DuckDBPyConnection:
        """Get or create a cursor for the current thread"""
        if not hasattr(self._thread_local, 'conn'):
            with self._conn_lock:
                self._thread_local.conn = self._root.cursor()
        return self._thread_local.conn

    def _create_schema(self, default_duration: int) -> None:
        conn = self._get_conn()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS contest_state (
                id INTEGER PRIMARY KEY,
                status VARCHAR DEFAULT 'LOCKED',
                start_time BIGINT,
                duration_minutes INTEGER DEFAULT 60
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS problems (
                id VARCHAR PRIMARY KEY,
                position INTEGER NOT NULL,
                data TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS teams (
                id VARCHAR PRIMARY KEY,
                name VARCHAR NOT NULL,
                password VARCHAR NOT NULL,
                members TEXT,
                total_score INTEGER DEFAULT 0,
                violations INTEGER DEFAULT 0,
                assigned_problem_id VARCHAR,
                last_submission_time BIGINT,
                position INTEGER NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS submissions (
                id VARCHAR PRIMARY KEY,
                team_id VARCHAR NOT NULL,
                seq INTEGER NOT NULL,
                timestamp BIGINT,
                score INTEGER DEFAULT 0,
                data TEXT NOT NULL
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_submissions_team ON submissions(team_id)")
        exists = conn.execute("SELECT COUNT(*) FROM contest_state WHERE id = 1").fetchone()[0]
        if not exists:
            conn.execute(
                "INSERT INTO contest_state (id, status, duration_minutes) VALUES (1, 'LOCKED', ?)",
                [default_duration]
            )

    def _transaction(self, work) -> Any:
        conn = self._get_conn()
        with self._write_lock:
            conn.execute("BEGIN TRANSACTION")
            try:
                result = work(conn)
            except Exception:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
            return result

    def _mutate(self, action: str, work) -> Any:
        try:
            return self._transaction(work)
        except duckdb.Error as e:
            logger.error(f"{action} failed: {e}")
            raise StorageUnavailable(f"{action} failed: {e}") from e

    def _row_to_team(self, row) -> Team:
        return Team(
            id=row[0],
            name=row[1],
            password=row[2],
            members=json.loads(row[3]) if row[3] else [],
            total_score=row[4] or 0,
            violations=row[5] or 0,
            assigned_problem_id=row[6],
            last_submission_time=row[7]
        )

    def get_state(self) -> Dict[str, Any]:
        conn = self._get_conn()
        try:
            contest_row = conn.execute(
                "SELECT status, start_time, duration_minutes FROM contest_state WHERE id = 1"
            ).fetchone()
            problem_rows = conn.execute("SELECT data FROM problems ORDER BY position").fetchall()
            team_rows = conn.execute("""
                SELECT id, name, password, members, total_score, violations,
                       assigned_problem_id, last_submission_time
                FROM teams ORDER BY position
            """).fetchall()
            submission_rows = conn.execute("SELECT data FROM submissions ORDER BY seq").fetchall()
        except duckdb.Error as e:
            logger.error(f"State read failed: {e}")
            raise StorageUnavailable(f"State read failed: {e}") from e

        contest = ContestState(
            status=ContestStatus(contest_row[0] or ContestStatus.LOCKED.value),
            start_time=contest_row[1],
            duration_minutes=contest_row[2] or 60,
            problem_bank=[Problem.from_dict(json.loads(r[0])) for r in problem_rows]
        )
        return {
            "contest": contest,
            "teams": [self._row_to_team(r) for r in team_rows],
            "submissions": [Submission.from_dict(json.loads(r[0])) for r in submission_rows]
        }

    def get_team(self, team_id: str) -> Optional[Team]:
        conn = self._get_conn()
        try:
            row = conn.execute("""
                SELECT id, name, password, members, total_score, violations,
                       assigned_problem_id, last_submission_time
                FROM teams WHERE id = ?
            """, [team_id]).fetchone()
        except duckdb.Error as e:
            raise StorageUnavailable(f"Team read failed: {e}") from e
        return self._row_to_team(row) if row else None

    def upsert_team(self, team: Team, fields: Optional[Iterable[str]] = None) -> Team:
        fields = _check_team_fields(fields)
        columns = {
            "name": team.name,
            "password": team.password,
            "members": json.dumps(team.members),
            "assigned_problem_id": team.assigned_problem_id,
            "total_score": team.total_score,
            "last_submission_time": team.last_submission_time,
            "violations": team.violations
        }

        def work(conn):
            exists = conn.execute("SELECT COUNT(*) FROM teams WHERE id = ?", [team.id]).fetchone()[0]
            if not exists:
                position = conn.execute("SELECT COALESCE(MAX(position), 0) + 1 FROM teams").fetchone()[0]
                conn.execute("""
                    INSERT INTO teams (id, name, password, members, total_score, violations,
                                       assigned_problem_id, last_submission_time, position)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, [team.id, columns["name"], columns["password"], columns["members"],
                      columns["total_score"], columns["violations"], columns["assigned_problem_id"],
                      columns["last_submission_time"], position])
                return
            names = fields if fields is not None else list(TEAM_FIELDS)
            assignments = ", ".join(f"{name} = ?" for name in names)
            conn.execute(
                f"UPDATE teams SET {assignments} WHERE id = ?",
                [columns[name] for name in names] + [team.id]
            )

        self._mutate("Team save", work)
        return self.get_team(team.id)

    def delete_team(self, team_id: str) -> None:
        self._mutate("Team deletion", lambda conn: conn.execute("DELETE FROM teams WHERE id = ?", [team_id]))

    def upsert_contest(self, partial: Dict[str, Any]) -> None:
        column_names = {"status": "status", "startTime": "start_time", "durationMinutes": "duration_minutes"}
        keys = [k for k in CONTEST_KEYS if k in partial]
        if not keys:
            return
        assignments = ", ".join(f"{column_names[k]} = ?" for k in keys)
        values = [_contest_value(k, partial[k]) for k in keys]
        self._mutate(
            "Contest update",
            lambda conn: conn.execute(f"UPDATE contest_state SET {assignments} WHERE id = 1", values)
        )

    def upsert_problem(self, problem: Problem) -> Problem:
        data = json.dumps(problem.to_dict(), ensure_ascii=False)

        def work(conn):
            exists = conn.execute("SELECT COUNT(*) FROM problems WHERE id = ?", [problem.id]).fetchone()[0]
            if exists:
                conn.execute("UPDATE problems SET data = ? WHERE id = ?", [data, problem.id])
            else:
                position = conn.execute("SELECT COALESCE(MAX(position), 0) + 1 FROM problems").fetchone()[0]
                conn.execute("INSERT INTO problems (id, position, data) VALUES (?, ?, ?)",
                             [problem.id, position, data])

        self._mutate("Problem save", work)
        return Problem.from_dict(json.loads(data))

    def delete_problem(self, problem_id: str) -> None:
        self._mutate("Problem deletion",
                     lambda conn: conn.execute("DELETE FROM problems WHERE id = ?", [problem_id]))

    def append_submission(self, submission: Submission) -> Submission:
        data = json.dumps(submission.to_dict(), ensure_ascii=False)

        def work(conn):
            seq = conn.execute("SELECT COALESCE(MAX(seq), 0) + 1 FROM submissions").fetchone()[0]
            conn.execute(
                "INSERT INTO submissions (id, team_id, seq, timestamp, score, data) VALUES (?, ?, ?, ?, ?, ?)",
                [submission.id, submission.team_id, seq, submission.timestamp, submission.score, data]
            )
            conn.execute("""
                UPDATE teams
                SET total_score = GREATEST(total_score, ?), last_submission_time = ?
                WHERE id = ?
            """, [clamp_score(submission.score), submission.timestamp, submission.team_id])

        self._mutate("Submission", work)
        return Submission.from_dict(json.loads(data))

    def increment_violation(self, team_id: str) -> None:
        def work(conn):
            exists = conn.execute("SELECT COUNT(*) FROM teams WHERE id = ?", [team_id]).fetchone()[0]
            if not exists:
                raise NotFoundError(f"Team {team_id} not found")
            conn.execute("UPDATE teams SET violations = violations + 1 WHERE id = ?", [team_id])

        self._mutate("Violation log", work)

    def begin_contest(self, partial: Dict[str, Any], draw: Callable[[List[Problem]], str]) -> Dict[str, str]:
        def work(conn):
            status = conn.execute("SELECT status FROM contest_state WHERE id = 1").fetchone()[0]
            if status != ContestStatus.LOCKED.value:
                raise PreconditionError(f"Contest can only start from LOCKED (status: {status})")
            bank = [
                Problem.from_dict(json.loads(row[0]))
                for row in conn.execute("SELECT data FROM problems ORDER BY position").fetchall()
            ]
            team_ids = [row[0] for row in conn.execute("SELECT id FROM teams ORDER BY position").fetchall()]
            assignments = {team_id: draw(bank) for team_id in team_ids}
            conn.execute("UPDATE teams SET total_score = 0, violations = 0")
            for team_id, problem_id in assignments.items():
                conn.execute("UPDATE teams SET assigned_problem_id = ? WHERE id = ?", [problem_id, team_id])
            conn.execute("DELETE FROM submissions")
            conn.execute(
                "UPDATE contest_state SET status = ?, start_time = ?, duration_minutes = ? WHERE id = 1",
                [_contest_value("status", partial["status"]),
                 _contest_value("startTime", partial.get("startTime")),
                 _contest_value("durationMinutes", partial["durationMinutes"])]
            )
            return assignments

        return self._mutate("Contest start", work)

    def finish_contest(self) -> ContestStatus:
        def work(conn):
            status = conn.execute("SELECT status FROM contest_state WHERE id = 1").fetchone()[0]
            if status == ContestStatus.ACTIVE.value:
                conn.execute("UPDATE contest_state SET status = 'FINISHED' WHERE id = 1")
            return ContestStatus(status or ContestStatus.LOCKED.value)

        return self._mutate("Contest finish", work)

    def reset_all(self) -> None:
        def work(conn):
            conn.execute("DELETE FROM submissions")
            conn.execute("DELETE FROM teams")
            conn.execute("UPDATE contest_state SET status = 'LOCKED', start_time = NULL WHERE id = 1")

        self._mutate("Arena reset", work)

    def close(self) -> None:
        conn = getattr(self._thread_local, "conn", None)
        if conn is not None:
            conn.close()
            del self._thread_local.conn
        self._root.close()


def create_storage(config) -> StateRepository:
    """Build the repository named by ``storage.backend``"""
    backend = (config.get("storage.backend", "json") or "json").lower()
    if backend == "duckdb":
        return DuckDBStorage(
            config.get("storage.duckdb_path", "data/codebattle.duckdb"),
            default_duration=config.get("contest.default_duration_minutes", 60)
        )
    if backend == "json":
        return JSONFileStorage(config.get("storage.json_path", "data/data.json"))
    raise ValueError(f"Unknown storage backend: {backend}")
