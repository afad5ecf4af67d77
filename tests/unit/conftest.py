from __future__ import annotations

import random
from typing import List, Optional

import pytest

from codebattle.engine.judge import Judge
from codebattle.engine.storage import DuckDBStorage, JSONFileStorage
from codebattle.models.models import (
    Difficulty, Problem, TestCase, TestCaseResult, Verdict
)


class FakeJudge(Judge):
    """Returns queued scores in order; raises when the queue holds an exception"""

    def __init__(self, scores: Optional[List] = None, ai_score: int = 70):
        self.scores = list(scores or [100])
        self.ai_score = ai_score
        self.calls = []

    def evaluate(self, code, problem, language):
        self.calls.append((code, problem.id, language))
        score = self.scores.pop(0) if len(self.scores) > 1 else self.scores[0]
        if isinstance(score, Exception):
            raise score
        return Verdict(
            results=[TestCaseResult(tc.id, passed=score == 100, actual_output="ok") for tc in problem.test_cases],
            total_score=score,
            ai_score=self.ai_score,
            ai_feedback="Looks fine."
        )


class FakeClock:
    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def make_problem(problem_id: str = "q1", cases: int = 2) -> Problem:
    return Problem(
        id=problem_id,
        title=f"Problem {problem_id}",
        difficulty=Difficulty.MEDIUM,
        description="Echo the input.",
        constraints=["1 <= n <= 10"],
        test_cases=[TestCase(f"tc{i}", str(i), str(i)) for i in range(1, cases + 1)]
    )


@pytest.fixture
def fake_judge() -> FakeJudge:
    return FakeJudge()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(7)


@pytest.fixture
def json_storage(tmp_path) -> JSONFileStorage:
    return JSONFileStorage(str(tmp_path / "data.json"))


@pytest.fixture(params=["json", "duckdb"])
def repository(request, tmp_path):
    """Each state repository backend, fresh per test"""
    if request.param == "json":
        store = JSONFileStorage(str(tmp_path / "data.json"))
    else:
        store = DuckDBStorage(str(tmp_path / "codebattle.duckdb"))
    yield store
    store.close()
