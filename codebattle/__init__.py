"""
CodeBattle - proctored team programming contest platform

An administrator runs a timed contest, teams solve randomly assigned
problems graded by a pluggable judge, and every session is proctored for
integrity events.
"""

from .models.models import (
    ContestState, ContestStatus, Difficulty, Identity, Problem, Submission,
    Team, TestCase, TestCaseResult, UserRole, Verdict, ViolationKind, generate_id
)
from .engine.storage import StateRepository, JSONFileStorage, DuckDBStorage
from .engine.judge import Judge
from .engine.contest import ContestClock
from .engine.submission import SubmissionPipeline
from .client.sync import ContestClient, SyncMode

__version__ = "0.1.0"
__all__ = [
    "ContestState", "ContestStatus", "Difficulty", "Identity", "Problem", "Submission",
    "Team", "TestCase", "TestCaseResult", "UserRole", "Verdict", "ViolationKind", "generate_id",
    "StateRepository", "JSONFileStorage", "DuckDBStorage", "Judge",
    "ContestClock", "SubmissionPipeline", "ContestClient", "SyncMode"
]
