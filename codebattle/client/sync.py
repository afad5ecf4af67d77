"""
Polling client that keeps a local view of the contest in step with the server.

The client is CONNECTED while the server answers and DEGRADED once it does
not. In DEGRADED mode every operation runs the same engine services against a
local JSON snapshot, so a session can carry on through an outage. The next
successful poll replaces the local view with the server's state wholesale;
nothing written locally is merged back.
"""

import copy
import random
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import requests

from ..engine.contest import ContestClock
from ..engine.errors import (
    AuthenticationError, CodeBattleError, JudgeError, NotFoundError,
    PreconditionError, StorageUnavailable, ValidationError
)
from ..engine.judge import Judge
from ..engine.problems import ProblemBank, default_problems
from ..engine.proctor import MediaCapture, SessionGuard
from ..engine.registry import TeamRegistry
from ..engine.storage import JSONFileStorage
from ..engine.submission import SubmissionPipeline
from ..models.models import (
    ContestState, ContestStatus, Identity, Problem, Submission, Team, UserRole, Verdict
)
from ..utils.logger_config import get_logger

logger = get_logger("sync")

# Server error statuses mapped back to engine errors
STATUS_ERRORS = {
    400: ValidationError,
    401: AuthenticationError,
    404: NotFoundError,
    409: PreconditionError,
}


class SyncMode(str, Enum):
    CONNECTED = "CONNECTED"
    DEGRADED = "DEGRADED"


class ServerUnreachable(Exception):
    """The server could not be reached or did not answer with a usable response"""


class OutcomeUnknown(CodeBattleError):
    """The server may have applied the request, but its answer never arrived"""


class OfflineJudge(Judge):
    """Judge used locally when no judge was supplied; every evaluation degrades"""

    def evaluate(self, code, problem, language):
        raise JudgeError("No judge available while disconnected")

    def test_connection(self) -> bool:
        return False


class ContestClient:
    def __init__(
        self,
        api_base: str = "http://localhost:3000",
        snapshot_path: Optional[str] = "data/local_snapshot.json",
        interval: float = 5.0,
        timeout: float = 5.0,
        submit_timeout: float = 90.0,
        judge: Optional[Judge] = None,
        admin_username: str = "admin",
        admin_password: str = "admin",
        rng: Optional[random.Random] = None
    ):
        self.api_base = api_base.rstrip("/")
        self.interval = interval
        self.timeout = timeout
        # Grading calls wait on the server's judge, so they need longer than a poll
        self.submit_timeout = submit_timeout

        self.local = JSONFileStorage(snapshot_path)
        self.clock = ContestClock(self.local, rng=rng)
        self.registry = TeamRegistry(self.local, admin_username=admin_username, admin_password=admin_password)
        self.problems = ProblemBank(self.local)
        self.pipeline = SubmissionPipeline(self.local, judge or OfflineJudge())

        self.mode = SyncMode.CONNECTED
        self.sync_error: Optional[str] = None
        self._lock = threading.RLock()
        self._cache = self._with_default_bank(self.local.snapshot())
        self._guards: List[SessionGuard] = []
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls, config, judge: Optional[Judge] = None, rng: Optional[random.Random] = None) -> "ContestClient":
        """Build a client from the ``sync`` and ``admin`` sections of a ConfigManager"""
        return cls(
            api_base=config.get("sync.api_base", "http://localhost:3000"),
            snapshot_path=config.get("sync.snapshot_path", "data/local_snapshot.json"),
            interval=config.get("sync.interval", 5.0),
            timeout=config.get("sync.timeout", 5.0),
            submit_timeout=config.get("sync.submit_timeout", 90.0),
            judge=judge,
            admin_username=config.get("admin.username", "admin"),
            admin_password=config.get("admin.password", "admin"),
            rng=rng
        )

    # Mode transitions

    def _enter_connected(self) -> None:
        with self._lock:
            if self.mode != SyncMode.CONNECTED:
                logger.info(f"Reconnected to {self.api_base}")
            self.mode = SyncMode.CONNECTED
            self.sync_error = None

    def _enter_degraded(self, reason: str) -> None:
        with self._lock:
            self.sync_error = reason
            if self.mode == SyncMode.DEGRADED:
                return
            self.mode = SyncMode.DEGRADED
            self._cache = self._with_default_bank(self.local.snapshot())
        logger.warning(f"Server unavailable ({reason}), switching to local mode")
        self._publish()

    @property
    def is_local(self) -> bool:
        return self.mode == SyncMode.DEGRADED

    # Cached view

    @staticmethod
    def _with_default_bank(data: Dict[str, Any]) -> Dict[str, Any]:
        contest = data.setdefault("contest", {})
        if not contest.get("problemBank"):
            contest["problemBank"] = [p.to_dict() for p in default_problems()]
        return data

    @property
    def state(self) -> Dict[str, Any]:
        """Raw wire-format copy of the current view"""
        with self._lock:
            return copy.deepcopy(self._cache)

    @property
    def contest(self) -> ContestState:
        with self._lock:
            return ContestState.from_dict(self._cache.get("contest") or {})

    @property
    def teams(self) -> List[Team]:
        with self._lock:
            return [Team.from_dict(t) for t in self._cache.get("teams") or []]

    @property
    def submissions(self) -> List[Submission]:
        with self._lock:
            return [Submission.from_dict(s) for s in self._cache.get("submissions") or []]

    def _refresh_from_local(self) -> None:
        with self._lock:
            self._cache = self._with_default_bank(self.local.snapshot())
        self._publish()

    def _publish(self) -> None:
        status = self.contest.status
        with self._lock:
            guards = list(self._guards)
        for guard in guards:
            guard.on_contest_status(status)

    # Polling

    def _fetch_state(self) -> Dict[str, Any]:
        try:
            response = requests.get(f"{self.api_base}/api/state", timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ServerUnreachable(f"request failed: {e}") from e
        if not 200 <= response.status_code < 300:
            raise ServerUnreachable(f"HTTP {response.status_code}")
        content_type = response.headers.get("Content-Type", "")
        if "application/json" not in content_type:
            raise ServerUnreachable(f"unexpected content type {content_type!r}")
        try:
            data = response.json()
        except ValueError as e:
            raise ServerUnreachable(f"invalid JSON body: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("contest"), dict):
            raise ServerUnreachable("state payload has no contest")
        return data

    def _keep_local_passwords(self, data: Dict[str, Any]) -> None:
        # The server never sends passwords; local logins need the ones we know
        known = {t.get("id"): t.get("password") for t in self.local.snapshot()["teams"]}
        for team in data.get("teams") or []:
            if not team.get("password") and known.get(team.get("id")):
                team["password"] = known[team["id"]]

    def sync(self) -> bool:
        """Poll the server once. Returns True when the view came from the server."""
        try:
            data = self._fetch_state()
        except ServerUnreachable as e:
            self._enter_degraded(str(e))
            return False

        data = self._with_default_bank(data)
        self._keep_local_passwords(data)
        with self._lock:
            self._cache = data
        try:
            self.local.replace(data)
        except StorageUnavailable as e:
            logger.error(f"Could not write local snapshot: {e}")
        self._enter_connected()
        self._publish()
        return True

    def _poll_loop(self) -> None:
        while True:
            try:
                self.sync()
            except Exception as e:
                logger.error(f"Sync failed unexpectedly: {e}", exc_info=True)
            if self._stop_event.wait(self.interval):
                break

    def start_polling(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._poll_loop, name="codebattle-sync", daemon=True)
        self._thread.start()
        logger.info(f"Polling {self.api_base} every {self.interval}s")

    def stop_polling(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=self.timeout + self.interval)
            self._thread = None

    def close(self) -> None:
        self.stop_polling()
        self.local.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # Remote calls

    def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        replayable: bool = True
    ) -> Any:
        """
        Call the API and return the ``data`` part of the envelope.

        A read timeout on a request that is not ``replayable`` raises
        OutcomeUnknown instead of ServerUnreachable: the server got the
        request and may have applied it, so it must not be redone locally.
        """
        send = getattr(requests, method)
        kwargs: Dict[str, Any] = {"timeout": timeout or self.timeout}
        if payload is not None:
            kwargs["json"] = payload
        try:
            response = send(f"{self.api_base}{path}", **kwargs)
        except requests.exceptions.ReadTimeout as e:
            if not replayable:
                logger.warning(f"{method.upper()} {path} timed out waiting for the server's answer")
                raise OutcomeUnknown(
                    f"{method.upper()} {path} timed out after reaching the server; check the submission history"
                ) from e
            raise ServerUnreachable(f"{method.upper()} {path} failed: {e}") from e
        except requests.exceptions.RequestException as e:
            raise ServerUnreachable(f"{method.upper()} {path} failed: {e}") from e
        if response.status_code >= 500:
            raise ServerUnreachable(f"{method.upper()} {path} returned HTTP {response.status_code}")
        try:
            result = response.json()
        except ValueError as e:
            raise ServerUnreachable(f"{method.upper()} {path} returned a non-JSON body") from e
        if not isinstance(result, dict):
            raise ServerUnreachable(f"{method.upper()} {path} returned an unexpected payload")

        if response.status_code >= 400 or result.get("status") != "success":
            message = result.get("message", "Unknown error")
            raise STATUS_ERRORS.get(response.status_code, CodeBattleError)(message)
        return result.get("data")

    def _call(self, action: str, remote: Callable[[], Any], local: Callable[[], Any]) -> Any:
        """Run ``remote`` while connected, ``local`` otherwise or when the server drops out"""
        if self.mode == SyncMode.CONNECTED:
            try:
                result = remote()
            except ServerUnreachable as e:
                self._enter_degraded(str(e))
            except OutcomeUnknown:
                # Pick up whatever the server stored before reporting
                self.sync()
                raise
            else:
                self.sync()
                return result
        logger.info(f"{action} handled locally")
        result = local()
        self._refresh_from_local()
        return result

    # Operations

    def login(self, identifier: str, password: str, role: UserRole = UserRole.TEAM) -> Identity:
        role = UserRole(getattr(role, "value", role))

        def remote():
            data = self._request("post", "/api/login", {
                "identifier": identifier, "password": password, "role": role.value
            })
            return Identity.from_dict(data)

        return self._call("Login", remote, lambda: self.registry.login(identifier, password, role))

    def create_team(self, name: str, password: str, members: Optional[List[str]] = None) -> Team:
        def remote():
            data = self._request("post", "/api/teams", {
                "name": name, "password": password, "members": members or []
            })
            team = Team.from_dict(data)
            team.password = password
            # Keep the password locally so team logins still work offline
            self.local.upsert_team(team)
            return team

        return self._call("Team registration", remote, lambda: self.registry.create(name, password, members))

    def delete_team(self, team_id: str) -> None:
        self._call(
            "Team deletion",
            lambda: self._request("delete", f"/api/teams/{team_id}"),
            lambda: self.registry.delete(team_id)
        )

    def save_problem(self, problem: Problem) -> Problem:
        return self._call(
            "Problem save",
            lambda: Problem.from_dict(self._request("post", "/api/problems", problem.to_dict())),
            lambda: self.problems.save(problem)
        )

    def create_problem(
        self,
        title: str,
        difficulty: str,
        description: str = "",
        constraints: Optional[List[str]] = None,
        test_cases: Optional[List[Dict[str, str]]] = None
    ) -> Problem:
        def remote():
            data = self._request("post", "/api/problems", {
                "title": title,
                "difficulty": difficulty,
                "description": description,
                "constraints": constraints or [],
                "testCases": test_cases or []
            })
            return Problem.from_dict(data)

        return self._call(
            "Problem creation",
            remote,
            lambda: self.problems.create(title, difficulty, description, constraints, test_cases)
        )

    def delete_problem(self, problem_id: str) -> None:
        self._call(
            "Problem deletion",
            lambda: self._request("delete", f"/api/problems/{problem_id}"),
            lambda: self.problems.delete(problem_id)
        )

    def start_contest(self, duration_minutes: int) -> ContestState:
        return self._call(
            "Contest start",
            lambda: ContestState.from_dict(
                self._request("post", "/api/contest/start", {"durationMinutes": duration_minutes})
            ),
            lambda: self.clock.start(duration_minutes)
        )

    def stop_contest(self) -> ContestStatus:
        return self._call(
            "Contest stop",
            lambda: ContestStatus(self._request("post", "/api/contest/stop")["status"]),
            self.clock.stop
        )

    def reset(self) -> None:
        self._call("Arena reset", lambda: self._request("post", "/api/reset"), self.clock.reset)

    def submit(
        self,
        team_id: str,
        problem_id: str,
        code: str,
        language: str,
        session_violations: Optional[int] = None
    ) -> Submission:
        """
        Grade and record a submission. Without ``session_violations`` the
        count kept by the session guard attached for ``team_id`` is sent.
        """
        if session_violations is None:
            session_violations = self.session_violations(team_id)

        def remote():
            data = self._request("post", "/api/submissions", {
                "teamId": team_id,
                "problemId": problem_id,
                "code": code,
                "language": language,
                "proctorViolations": session_violations
            }, timeout=self.submit_timeout, replayable=False)
            return Submission.from_dict(data)

        return self._call(
            "Submission",
            remote,
            lambda: self.pipeline.submit(team_id, problem_id, code, language, session_violations)
        )

    def run(self, code: str, problem_id: str, language: str) -> Verdict:
        return self._call(
            "Dry run",
            lambda: Verdict.from_dict(self._request("post", "/api/run", {
                "problemId": problem_id, "code": code, "language": language
            }, timeout=self.submit_timeout)),
            lambda: self.pipeline.run(code, problem_id, language)
        )

    def report_violation(self, team_id: str) -> None:
        self._call(
            "Violation report",
            lambda: self._request("post", f"/api/violations/{team_id}"),
            lambda: self.local.increment_violation(team_id)
        )

    def attach_guard(
        self,
        team_id: str,
        alert: Optional[Callable[[str], None]] = None,
        media: Optional[MediaCapture] = None
    ) -> SessionGuard:
        """Start a proctoring session that reports through this client"""
        guard = SessionGuard(
            team_id,
            reporter=self.report_violation,
            contest_status=lambda: self.contest.status,
            alert=alert,
            media=media
        )
        with self._lock:
            self._guards = [g for g in self._guards if g.attached]
            self._guards.append(guard)
        return guard.start()

    def session_violations(self, team_id: str) -> int:
        """Violations counted since the latest attached guard for ``team_id`` was started"""
        with self._lock:
            guards = [g for g in self._guards if g.attached and g.team_id == team_id]
        return guards[-1].session_violations if guards else 0
