"""
Problem bank management.

Problems are validated before they reach the store. When the stored bank is
empty, contest start and the team view fall back to the built-in bank so a
misconfigured event can still run.
"""

from typing import Any, Dict, List, Optional

from ..models.models import Difficulty, Problem, TestCase, generate_id
from ..utils.logger_config import get_logger
from .errors import NotFoundError, ValidationError
from .storage import StateRepository

logger = get_logger("problems")


DEFAULT_PROBLEMS: List[Dict[str, Any]] = [
    {
        "id": "p1",
        "title": "Multi-Lingual FizzBuzz",
        "difficulty": "Easy",
        "description": (
            "Read an integer `n` from standard input. For each integer `i` from 1 to `n` (inclusive), "
            "print a value to a new line:\n"
            "- \"FizzBuzz\" if `i` is divisible by 3 and 5.\n"
            "- \"Fizz\" if `i` is divisible by 3.\n"
            "- \"Buzz\" if `i` is divisible by 5.\n"
            "- The value of `i` itself if none of the above apply."
        ),
        "constraints": ["1 <= n <= 10^4"],
        "testCases": [
            {"id": "tc1", "input": "3", "expectedOutput": "1\n2\nFizz"},
            {"id": "tc2", "input": "5", "expectedOutput": "1\n2\nFizz\n4\nBuzz"},
            {"id": "tc3", "input": "15",
             "expectedOutput": "1\n2\nFizz\n4\nBuzz\nFizz\n7\n8\nFizz\nBuzz\n11\nFizz\n13\n14\nFizzBuzz"}
        ]
    },
    {
        "id": "p2",
        "title": "The Anagram Detector",
        "difficulty": "Easy",
        "description": (
            "Read two strings `s` and `t` from standard input (each on a new line). Output \"true\" if `t` "
            "is an anagram of `s`, and \"false\" otherwise.\n\n"
            "An anagram is formed by rearranging letters. For example, \"silent\" and \"listen\" are anagrams."
        ),
        "constraints": ["1 <= s.length, t.length <= 5000", "Strings contain lowercase English letters."],
        "testCases": [
            {"id": "tc1", "input": "anagram\nnagaram", "expectedOutput": "true"},
            {"id": "tc2", "input": "rat\ncar", "expectedOutput": "false"}
        ]
    },
    {
        "id": "p3",
        "title": "Bracket Balance",
        "difficulty": "Easy",
        "description": (
            "Read a string containing only parentheses \"()\", \"[]\", and \"{}\" from standard input. "
            "Output \"true\" if the brackets are balanced and correctly nested, otherwise output \"false\"."
        ),
        "constraints": ["1 <= string length <= 10^4"],
        "testCases": [
            {"id": "tc1", "input": "()[]{}", "expectedOutput": "true"},
            {"id": "tc2", "input": "([)]", "expectedOutput": "false"},
            {"id": "tc3", "input": "{[]}", "expectedOutput": "true"}
        ]
    },
    {
        "id": "p4",
        "title": "The Staircase Problem",
        "difficulty": "Medium",
        "description": (
            "You are climbing a staircase with `n` steps. Each time you can climb 1 or 2 steps. "
            "Read `n` from standard input and output the number of distinct ways to reach the top."
        ),
        "constraints": ["1 <= n <= 40"],
        "testCases": [
            {"id": "tc1", "input": "2", "expectedOutput": "2"},
            {"id": "tc2", "input": "3", "expectedOutput": "3"},
            {"id": "tc3", "input": "10", "expectedOutput": "89"}
        ]
    },
    {
        "id": "p5",
        "title": "Maximum Continuous Sum",
        "difficulty": "Medium",
        "description": (
            "Read an array of integers from standard input. The first line contains the size of the "
            "array `n`. The second line contains `n` space-separated integers. Output the maximum sum "
            "of a contiguous subarray."
        ),
        "constraints": ["1 <= n <= 10^5", "-10^4 <= value <= 10^4"],
        "testCases": [
            {"id": "tc1", "input": "9\n-2 1 -3 4 -1 2 1 -5 4", "expectedOutput": "6"},
            {"id": "tc2", "input": "5\n5 4 -1 7 8", "expectedOutput": "23"}
        ]
    }
]


def default_problems() -> List[Problem]:
    """Fresh copies of the built-in bank"""
    return [Problem.from_dict(p) for p in DEFAULT_PROBLEMS]


def effective_bank(bank: List[Problem]) -> List[Problem]:
    """The stored bank, or the built-in bank when it is empty"""
    if bank:
        return bank
    logger.warning("Problem bank is empty, falling back to the built-in problems")
    return default_problems()


def validate_problem(problem: Problem) -> None:
    if not isinstance(problem.id, str) or not problem.id.strip():
        raise ValidationError("Problem id is required")
    if not isinstance(problem.title, str) or not problem.title.strip():
        raise ValidationError("Problem title is required")
    if not isinstance(problem.difficulty, Difficulty):
        raise ValidationError(f"Invalid difficulty: {problem.difficulty!r}")
    if not isinstance(problem.description, str):
        raise ValidationError("Problem description must be text")
    if any(not isinstance(c, str) for c in problem.constraints):
        raise ValidationError("Constraints must be strings")

    seen = set()
    for case in problem.test_cases:
        if not isinstance(case.id, str) or not case.id:
            raise ValidationError("Test case id is required")
        if case.id in seen:
            raise ValidationError(f"Duplicate test case id: {case.id}")
        seen.add(case.id)
        if not isinstance(case.input, str) or not isinstance(case.expected_output, str):
            raise ValidationError(f"Test case {case.id} must have text input and expected output")


def parse_problem(data: Dict[str, Any]) -> Problem:
    """Build a Problem from a wire payload, turning format errors into ValidationError"""
    if not isinstance(data, dict):
        raise ValidationError("Problem payload must be an object")
    for key in ("constraints", "testCases"):
        if data.get(key) is not None and not isinstance(data[key], list):
            raise ValidationError(f"{key} must be a list")
    try:
        problem = Problem.from_dict(data)
    except (TypeError, ValueError, AttributeError) as e:
        raise ValidationError(f"Malformed problem: {e}") from e
    validate_problem(problem)
    return problem


class ProblemBank:
    """Ordered collection of contest problems backed by the state repository"""

    def __init__(self, repository: StateRepository):
        self.repository = repository

    def list(self) -> List[Problem]:
        return self.repository.get_contest().problem_bank

    def get(self, problem_id: str) -> Problem:
        for problem in self.list():
            if problem.id == problem_id:
                return problem
        raise NotFoundError(f"Problem {problem_id} not found")

    def resolve(self, problem_id: Optional[str]) -> Problem:
        """
        Find a problem in the stored bank, then in the built-in bank.

        Unknown ids resolve to the first built-in problem, the same fallback
        the team view uses when an assignment points nowhere.
        """
        for problem in self.list() + default_problems():
            if problem.id == problem_id:
                return problem
        logger.warning(f"Problem {problem_id} not found, using the first built-in problem")
        return default_problems()[0]

    def save(self, problem: Problem) -> Problem:
        validate_problem(problem)
        saved = self.repository.upsert_problem(problem)
        logger.info(f"Saved problem {saved.id} ({saved.title})")
        return saved

    def create(
        self,
        title: str,
        difficulty: str,
        description: str = "",
        constraints: Optional[List[str]] = None,
        test_cases: Optional[List[Dict[str, str]]] = None
    ) -> Problem:
        """Create a problem with generated ids, dropping blank constraints"""
        try:
            level = Difficulty(difficulty)
        except ValueError as e:
            raise ValidationError(f"Invalid difficulty: {difficulty!r}") from e

        problem_id = generate_id("p")
        cases = [
            TestCase(
                id=f"tc-{index}-{problem_id}",
                input=case.get("input", ""),
                expected_output=case.get("expectedOutput", case.get("expected_output", ""))
            )
            for index, case in enumerate(test_cases or [])
        ]
        problem = Problem(
            id=problem_id,
            title=title,
            difficulty=level,
            description=description,
            constraints=[c for c in (constraints or []) if isinstance(c, str) and c.strip()],
            test_cases=cases
        )
        return self.save(problem)

    def delete(self, problem_id: str) -> None:
        self.repository.delete_problem(problem_id)
        logger.info(f"Deleted problem {problem_id}")
