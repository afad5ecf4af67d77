import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import json_repair
import requests

from ..models.models import Problem, TestCaseResult, Verdict, clamp_score
from ..utils.logger_config import get_logger
from .errors import JudgeError

logger = get_logger("judge")

DEGRADED_FEEDBACK = (
    "The AI evaluator encountered an error while processing your logic. "
    "Please check your syntax and try again."
)


class Judge(ABC):
    """Grades source code against a problem's test cases"""

    @abstractmethod
    def evaluate(self, code: str, problem: Problem, language: str) -> Verdict:
        """Return a verdict, or raise on failure"""

    def test_connection(self) -> bool:
        return True


def degraded_verdict(problem: Problem, reason: Optional[str] = None) -> Verdict:
    """All-fail, zero-score verdict used when the judge cannot answer"""
    if reason:
        logger.debug(f"Degraded verdict for problem {problem.id}: {reason}")
    return Verdict(
        results=[
            TestCaseResult(
                test_case_id=case.id,
                passed=False,
                actual_output="Execution Engine Timeout",
                error="Internal Processing Error"
            )
            for case in problem.test_cases
        ],
        total_score=0,
        ai_score=0,
        ai_feedback=DEGRADED_FEEDBACK
    )


def parse_verdict(payload: Any) -> Verdict:
    """Validate a judge payload against the verdict contract"""
    if not isinstance(payload, dict):
        raise JudgeError(f"Judge returned {type(payload).__name__}, expected an object")
    raw_results = payload.get("results")
    if not isinstance(raw_results, list):
        raise JudgeError("Judge verdict has no results list")
    for key in ("totalScore", "aiScore"):
        value = payload.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise JudgeError(f"Judge verdict field {key} is not a number")

    results = []
    for item in raw_results:
        if not isinstance(item, dict) or "testCaseId" not in item:
            raise JudgeError(f"Malformed test case result: {item!r}")
        results.append(TestCaseResult(
            test_case_id=str(item["testCaseId"]),
            passed=bool(item.get("passed", False)),
            actual_output=str(item.get("actualOutput") or ""),
            error=item.get("error")
        ))

    return Verdict(
        results=results,
        total_score=clamp_score(payload["totalScore"]),
        ai_score=clamp_score(payload["aiScore"]),
        ai_feedback=str(payload.get("aiFeedback") or "")
    )


def safe_evaluate(judge: Judge, code: str, problem: Problem, language: str) -> Verdict:
    """Run the judge; any failure, timeout included, becomes a degraded verdict"""
    try:
        verdict = judge.evaluate(code, problem, language)
        if not isinstance(verdict, Verdict):
            raise JudgeError(f"Judge returned {type(verdict).__name__} instead of a Verdict")
        return verdict
    except Exception as e:
        logger.error(f"Judge evaluation failed for problem {problem.id}: {e}", exc_info=True)
        return degraded_verdict(problem, str(e))


class LLMJudge(Judge):
    """
    Judge backed by an OpenAI-compatible chat completion endpoint.

    The model simulates the code against every test case and reviews its
    quality; the reply must be a JSON object following the verdict contract.
    """

    def __init__(self, api_base_url: str, api_key: str, model_id: str, timeout: float = 60.0):
        self.api_base_url = api_base_url.rstrip("/")
        self.api_key = api_key
        self.model_id = model_id
        self.timeout = timeout
        logger.info(f"Initialized LLM judge with model {model_id} at {self.api_base_url}")

    def build_prompt(self, code: str, problem: Problem, language: str) -> str:
        test_cases = json.dumps([tc.to_dict() for tc in problem.test_cases], ensure_ascii=False)
        return f"""
You are a world-class competitive programming judge and a senior code auditor.

PROBLEM: {problem.title}
DESCRIPTION: {problem.description}
CONSTRAINTS: {', '.join(problem.constraints)}

EXPECTED TEST CASES (Input/Output Pairs):
{test_cases}

SUBMITTED CODE:
```{language}
{code}
```

YOUR MISSION:
1. Execution Simulation: Mentally execute the code against EVERY provided test case. Check for exact string matching on output.
2. Logic Review: Check for edge cases, potential time complexity issues, and memory usage.
3. Qualitative Analysis: Look for clean code practices, meaningful variable names, and algorithmic correctness.

SCORING CRITERIA:
- "totalScore": Percentage (0-100) based strictly on how many test cases pass simulation.
- "aiScore": Percentage (0-100) representing the quality of the algorithm and code structure.

OUTPUT: Return ONLY a valid JSON object of the form
{{"results": [{{"testCaseId": "...", "passed": true, "actualOutput": "...", "error": null}}],
 "totalScore": 0, "aiScore": 0, "aiFeedback": "..."}}
"""

    def evaluate(self, code: str, problem: Problem, language: str) -> Verdict:
        payload = {
            "model": self.model_id,
            "messages": [
                {"role": "system", "content": "You grade programming contest submissions and answer in JSON."},
                {"role": "user", "content": self.build_prompt(code, problem, language)}
            ],
            "temperature": 0.0,
            "response_format": {"type": "json_object"}
        }
        logger.info(f"Requesting LLM verdict for problem {problem.id} ({language})")
        response = requests.post(
            f"{self.api_base_url}/v1/chat/completions",
            json=payload,
            headers={"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout
        )
        response.raise_for_status()

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise JudgeError(f"Unexpected LLM response shape: {e}") from e
        if not content:
            raise JudgeError("Empty response from LLM judge")

        return parse_verdict(json_repair.loads(content))

    def test_connection(self) -> bool:
        try:
            response = requests.get(
                f"{self.api_base_url}/v1/models",
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout
            )
            return response.status_code < 400
        except requests.exceptions.RequestException:
            return False


class OnlineJudge(Judge):
    """
    Judge that compiles and runs code on the local OJ service, one request per test case.

    The OJ only checks correctness, so ``aiScore`` is always 0.
    """

    def __init__(
        self,
        oj_endpoint: str = "http://localhost:9000/2015-03-31/functions/function/invocations",
        timeout: float = 60.0,
        time_limit_ms: int = 2000
    ):
        self.oj_endpoint = oj_endpoint
        self.timeout = timeout
        self.time_limit_ms = time_limit_ms
        logger.info(f"Initialized Judge with OJ service at {oj_endpoint}")

    def evaluate(self, code: str, problem: Problem, language: str) -> Verdict:
        logger.info(f"Evaluating code for problem {problem.id} on the OJ")
        results = [
            self._run_test(code, language, case.id, case.input, case.expected_output)
            for case in problem.test_cases
        ]
        total = len(results)
        passed = sum(1 for r in results if r.passed)
        score = int(round(100 * passed / total)) if total else 0
        return Verdict(
            results=results,
            total_score=score,
            ai_score=0,
            ai_feedback=f"{passed}/{total} test cases passed. No code quality review was performed."
        )

    def _build_payload(self, code: str, language: str, input_data: str) -> Dict[str, Any]:
        return {
            "version": "2.0",
            "rawPath": "/compile-and-execute",
            "requestContext": {
                "http": {
                    "method": "POST",
                    "path": "/compile-and-execute"
                }
            },
            "headers": {
                "Content-Type": "application/json"
            },
            "body": json.dumps({
                "compile": {
                    "source_code": code,
                    "compiler_options": self._get_compiler_options(language),
                    "language": self._get_language_code(language)
                },
                "execute": {
                    "stdin": input_data,
                    "timeout_ms": self.time_limit_ms
                }
            }),
            "isBase64Encoded": False
        }

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = requests.post(self.oj_endpoint, json=payload, timeout=self.timeout)
        response.raise_for_status()
        response_json = response.json()
        # The actual result is inside 'body' as a string
        if 'body' in response_json and isinstance(response_json['body'], str):
            return json.loads(response_json['body'])
        return response_json

    def _run_test(self, code: str, language: str, test_case_id: str, input_data: str, expected_output: str) -> TestCaseResult:
        result = self._post(self._build_payload(code, language, input_data))
        compile_result = result.get("compile") or {}
        execute_result = result.get("execute") or {}

        if compile_result.get("exit_code", 0) != 0:
            return TestCaseResult(
                test_case_id=test_case_id,
                passed=False,
                actual_output="",
                error=compile_result.get("stderr") or "Compilation failed"
            )

        actual_output = execute_result.get("stdout", "")
        if execute_result.get("exit_code", 0) != 0:
            verdict = (execute_result.get("verdict") or "").lower()
            stderr = execute_result.get("stderr") or ""
            if verdict == "time limit exceeded" or "time limit" in stderr.lower():
                error = "Time Limit Exceeded"
            else:
                error = stderr or "Runtime Error"
            return TestCaseResult(test_case_id=test_case_id, passed=False, actual_output=actual_output, error=error)

        return TestCaseResult(
            test_case_id=test_case_id,
            passed=self._compare_outputs(actual_output, expected_output),
            actual_output=actual_output.strip()
        )

    def _get_compiler_options(self, language: str) -> str:
        """Get appropriate compiler options based on language"""
        if language.lower() in ["c++", "cpp"]:
            return "-O2 -std=c++17"
        return ""

    def _get_language_code(self, language: str) -> str:
        """Convert user-friendly language name to OJ language code"""
        language = language.lower()
        if language in ["c++", "cpp"]:
            return "cpp"
        elif language == "java":
            return "java21"
        elif language in ["python", "python3"]:
            return "py12"
        return language

    def _compare_outputs(self, actual: str, expected: str) -> bool:
        """
        Compare actual and expected outputs.
        Handles line endings, whitespace runs and numeric formatting.
        """
        actual = actual.replace("\r\n", "\n").strip()
        expected = expected.replace("\r\n", "\n").strip()

        if actual == expected:
            return True

        if " ".join(actual.split()) == " ".join(expected.split()):
            return True

        try:
            return abs(float(actual) - float(expected)) < 1e-6
        except (ValueError, TypeError):
            pass

        return False

    def test_connection(self) -> bool:
        """Test the connection to the OJ system with a simple problem"""
        test_code = """
#include <iostream>
using namespace std;

int main() {
  int a, b;
  cin >> a >> b;
  cout << a + b << endl;
  return 0;
}
"""
        try:
            result = self._post(self._build_payload(test_code, "cpp", "5 7"))
            return (result.get("execute") or {}).get("stdout", "").strip() == "12"
        except (requests.exceptions.RequestException, ValueError):
            return False


def create_judge(config) -> Judge:
    """Build the judge named by ``judge.backend``"""
    backend = (config.get("judge.backend", "llm") or "llm").lower()
    timeout = config.get("judge.timeout", 60)
    if backend == "oj":
        return OnlineJudge(
            oj_endpoint=config.get("judge.oj.endpoint"),
            timeout=timeout,
            time_limit_ms=config.get("judge.oj.time_limit_ms", 2000)
        )
    if backend == "llm":
        return LLMJudge(
            api_base_url=config.get("judge.llm.api_base_url", "https://api.openai.com"),
            api_key=config.get("judge.llm.api_key", ""),
            model_id=config.get("judge.llm.model_id", "gpt-4o"),
            timeout=timeout
        )
    raise ValueError(f"Unknown judge backend: {backend}")
