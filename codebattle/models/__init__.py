"""
Models package for CodeBattle.

This package contains the data models shared by the engine, the storage
backends, the HTTP API and the sync client.
"""

from .models import (
    ContestState,
    ContestStatus,
    Difficulty,
    Identity,
    Problem,
    Submission,
    Team,
    TestCase,
    TestCaseResult,
    UserRole,
    Verdict,
    ViolationKind,
    clamp_score,
    generate_id,
    normalize_team_id,
    now_ms
)

__all__ = [
    "ContestState",
    "ContestStatus",
    "Difficulty",
    "Identity",
    "Problem",
    "Submission",
    "Team",
    "TestCase",
    "TestCaseResult",
    "UserRole",
    "Verdict",
    "ViolationKind",
    "clamp_score",
    "generate_id",
    "normalize_team_id",
    "now_ms"
]
