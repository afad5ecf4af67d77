"""
Engine business logic for CodeBattle.

This module contains the contest lifecycle, the team registry, the problem
bank, the submission pipeline, the proctoring monitor and the state
repository backends.
"""

from .errors import (
    AuthenticationError, CodeBattleError, CollaboratorFailure, ContestNotActive,
    JudgeError, NotFoundError, PreconditionError, StorageUnavailable, ValidationError
)
from .storage import StateRepository, JSONFileStorage, DuckDBStorage, create_storage
from .problems import ProblemBank, DEFAULT_PROBLEMS, default_problems, effective_bank
from .registry import TeamRegistry
from .contest import ContestClock
from .judge import Judge, LLMJudge, OnlineJudge, create_judge, degraded_verdict, safe_evaluate
from .submission import SubmissionPipeline
from .proctor import SessionGuard, MediaCapture, NullMediaCapture, ViolationDetected
from .leaderboard import standings, submission_feed, dashboard_summary

__all__ = [
    "AuthenticationError", "CodeBattleError", "CollaboratorFailure", "ContestNotActive",
    "JudgeError", "NotFoundError", "PreconditionError", "StorageUnavailable", "ValidationError",
    "StateRepository", "JSONFileStorage", "DuckDBStorage", "create_storage",
    "ProblemBank", "DEFAULT_PROBLEMS", "default_problems", "effective_bank",
    "TeamRegistry", "ContestClock",
    "Judge", "LLMJudge", "OnlineJudge", "create_judge", "degraded_verdict", "safe_evaluate",
    "SubmissionPipeline",
    "SessionGuard", "MediaCapture", "NullMediaCapture", "ViolationDetected",
    "standings", "submission_feed", "dashboard_summary"
]
