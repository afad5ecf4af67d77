import random
from typing import Any, Dict, Optional, Tuple

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException

from ..engine.contest import ContestClock, validate_duration
from ..engine.errors import (
    AuthenticationError, CodeBattleError, CollaboratorFailure, NotFoundError,
    PreconditionError, StorageUnavailable, ValidationError
)
from ..engine.judge import Judge, create_judge
from ..engine.leaderboard import dashboard_summary, standings, submission_feed
from ..engine.problems import ProblemBank, default_problems, parse_problem
from ..engine.registry import TeamRegistry
from ..engine.storage import StateRepository, create_storage
from ..engine.submission import SubmissionPipeline
from ..models.models import ContestStatus, UserRole
from ..utils.config_manager import ConfigManager, get_config
from ..utils.logger_config import get_logger

logger = get_logger("server")

ERROR_STATUS = (
    (ValidationError, 400),
    (AuthenticationError, 401),
    (NotFoundError, 404),
    (PreconditionError, 409),
    (StorageUnavailable, 503),
    (CollaboratorFailure, 502),
)


class ContestServices:
    """Engine components sharing one state repository"""

    def __init__(self, config: ConfigManager, storage: StateRepository, judge: Judge, rng: Optional[random.Random] = None):
        self.config = config
        self.storage = storage
        self.judge = judge
        self.clock = ContestClock(
            storage,
            rng=rng,
            auto_finish=bool(config.get("contest.auto_finish_on_expiry", False))
        )
        self.registry = TeamRegistry(
            storage,
            admin_username=config.get("admin.username", "admin"),
            admin_password=config.get("admin.password", "admin")
        )
        self.problems = ProblemBank(storage)
        self.pipeline = SubmissionPipeline(storage, judge)


# Helper functions
def success_response(data: Any = None, message: str = "Success") -> Response:
    """
    Create a standardized success response.

    Args:
        data: Optional data to include in response
        message: Success message string

    Returns:
        Flask Response object with success status
    """
    response = {
        "status": "success",
        "message": message
    }
    if data is not None:
        response["data"] = data
    return jsonify(response)


def error_response(message: str, status_code: int = 400) -> Tuple[Response, int]:
    """
    Create a standardized error response.

    Args:
        message: Error message string
        status_code: HTTP status code (default: 400)

    Returns:
        Tuple of (Flask Response object, status code)
    """
    response = {
        "status": "error",
        "message": message
    }
    return jsonify(response), status_code


def get_payload() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def state_payload(state: Dict[str, Any]) -> Dict[str, Any]:
    """Wire form of the full snapshot; team passwords stay on the server"""
    return {
        "contest": state["contest"].to_dict(),
        "teams": [t.to_dict(include_password=False) for t in state["teams"]],
        "submissions": [s.to_dict() for s in state["submissions"]]
    }


def create_app(
    config: Optional[ConfigManager] = None,
    storage: Optional[StateRepository] = None,
    judge: Optional[Judge] = None,
    rng: Optional[random.Random] = None
) -> Flask:
    """
    Build the Flask application.

    Storage and judge default to the backends named in the configuration.
    """
    config = config or get_config()
    storage = storage or create_storage(config)
    judge = judge or create_judge(config)
    services = ContestServices(config, storage, judge, rng=rng)

    app = Flask(__name__)
    app.extensions["codebattle"] = services
    logger.info("Created Flask application")

    @app.errorhandler(CodeBattleError)
    def handle_engine_error(e: CodeBattleError):
        for error_type, status_code in ERROR_STATUS:
            if isinstance(e, error_type):
                break
        else:
            status_code = 500
        log = logger.error if status_code >= 500 else logger.warning
        log(f"{request.method} {request.path} failed: {e}")
        return error_response(str(e), status_code)

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return error_response(e.description or e.name, e.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected_error(e: Exception):
        logger.error(f"Unhandled error on {request.method} {request.path}: {e}", exc_info=True)
        return error_response("Internal server error", 500)

    @app.route("/api/system/health", methods=["GET"])
    def health():
        return success_response({"alive": True})

    @app.route("/api/system/judge-status", methods=["GET"])
    def judge_status():
        connected = services.judge.test_connection()
        return success_response({"connected": connected}, "Judge reachable" if connected else "Judge unreachable")

    @app.route("/api/state", methods=["GET"])
    def get_state():
        """Full snapshot polled by every client"""
        services.clock.enforce_expiry()
        state = services.storage.get_state()
        payload = state_payload(state)
        if not payload["contest"]["problemBank"]:
            payload["contest"]["problemBank"] = [p.to_dict() for p in default_problems()]
        return jsonify(payload)

    @app.route("/api/login", methods=["POST"])
    def login():
        data = get_payload()
        try:
            role = UserRole(data.get("role", UserRole.TEAM.value))
        except ValueError as e:
            raise ValidationError(f"Unknown role: {data.get('role')!r}") from e
        identity = services.registry.login(
            str(data.get("identifier", "")),
            str(data.get("password", "")),
            role
        )
        return success_response(identity.to_dict(), "Login successful")

    @app.route("/api/teams", methods=["POST"])
    def create_team():
        data = get_payload()
        team = services.registry.create(
            data.get("name", ""),
            data.get("password", ""),
            members=data.get("members") or []
        )
        return success_response(team.to_dict(include_password=False), "Team saved"), 201

    @app.route("/api/teams/<team_id>", methods=["DELETE"])
    def delete_team(team_id: str):
        services.registry.delete(team_id)
        return success_response({"id": team_id}, "Team deleted")

    @app.route("/api/contest/start", methods=["POST"])
    def start_contest():
        data = get_payload()
        duration = data.get("durationMinutes", config.get("contest.default_duration_minutes", 60))
        contest = services.clock.start(duration)
        return success_response(contest.to_dict(), "Contest started")

    @app.route("/api/contest/stop", methods=["POST"])
    def stop_contest():
        status = services.clock.stop()
        return success_response({"status": status.value}, "Contest stopped")

    @app.route("/api/contest", methods=["POST"])
    def update_contest():
        """Compatibility endpoint taking a partial contest object"""
        data = get_payload()
        status = data.get("status")
        if status == ContestStatus.ACTIVE.value:
            duration = data.get("durationMinutes", config.get("contest.default_duration_minutes", 60))
            return success_response(services.clock.start(duration).to_dict(), "Contest started")
        if status == ContestStatus.FINISHED.value:
            return success_response({"status": services.clock.stop().value}, "Contest stopped")
        if status not in (None, ContestStatus.LOCKED.value):
            raise ValidationError(f"Unknown contest status: {status!r}")
        if status == ContestStatus.LOCKED.value and services.clock.status != ContestStatus.LOCKED:
            raise PreconditionError("Use /api/reset to return the arena to LOCKED")
        if "durationMinutes" in data:
            if services.clock.status != ContestStatus.LOCKED:
                raise PreconditionError("Duration can only be changed while the contest is LOCKED")
            services.storage.upsert_contest({"durationMinutes": validate_duration(data["durationMinutes"])})
        return success_response(services.clock.state().to_dict(), "Contest updated")

    @app.route("/api/problems", methods=["POST"])
    def save_problem():
        data = get_payload()
        if data.get("id"):
            problem = services.problems.save(parse_problem(data))
        else:
            problem = services.problems.create(
                title=data.get("title", ""),
                difficulty=data.get("difficulty", ""),
                description=data.get("description", ""),
                constraints=data.get("constraints") or [],
                test_cases=data.get("testCases") or []
            )
        return success_response(problem.to_dict(), "Problem saved"), 201

    @app.route("/api/problems/<problem_id>", methods=["DELETE"])
    def delete_problem(problem_id: str):
        services.problems.delete(problem_id)
        return success_response({"id": problem_id}, "Problem deleted")

    @app.route("/api/submissions", methods=["POST"])
    def create_submission():
        data = get_payload()
        submission = services.pipeline.submit(
            team_id=str(data.get("teamId", "")),
            problem_id=str(data.get("problemId", "")),
            code=data.get("code", ""),
            language=data.get("language", ""),
            session_violations=data.get("proctorViolations", 0) or 0
        )
        return success_response(submission.to_dict(), "Submission recorded"), 201

    @app.route("/api/run", methods=["POST"])
    def run_code():
        data = get_payload()
        verdict = services.pipeline.run(
            code=data.get("code", ""),
            problem_id=str(data.get("problemId", "")),
            language=data.get("language", "")
        )
        return success_response(verdict.to_dict(), "Run complete")

    @app.route("/api/violations/<team_id>", methods=["POST"])
    def log_violation(team_id: str):
        services.storage.increment_violation(team_id)
        logger.warning(f"Violation logged for team {team_id}")
        return success_response({"teamId": team_id}, "Violation logged")

    @app.route("/api/reset", methods=["POST"])
    def reset_arena():
        services.clock.reset()
        return success_response(message="Arena reset")

    @app.route("/api/leaderboard", methods=["GET"])
    def leaderboard():
        return success_response(standings(services.storage.list_teams()))

    @app.route("/api/dashboard", methods=["GET"])
    def dashboard():
        services.clock.enforce_expiry()
        state = services.storage.get_state()
        limit = request.args.get("limit", type=int)
        return success_response({
            "summary": dashboard_summary(state, services.clock),
            "standings": standings(state["teams"]),
            "submissions": submission_feed(state["submissions"], state["teams"], limit=limit)
        })

    return app


def run_api(host: str = "0.0.0.0", port: int = 3000, debug: bool = False, config: Optional[ConfigManager] = None):
    """Run the API server"""
    app = create_app(config)
    logger.info(f"CodeBattle server running at {host}:{port}")
    app.run(host=host, port=port, debug=debug, threaded=True)
