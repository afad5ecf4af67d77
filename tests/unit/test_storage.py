from __future__ import annotations

import json
import os
import threading

import pytest

from codebattle.engine.errors import NotFoundError, PreconditionError, StorageUnavailable
from codebattle.engine.storage import JSONFileStorage, create_storage
from codebattle.models.models import ContestStatus, Submission, Team
from codebattle.utils.config_manager import ConfigManager

from conftest import make_problem


def _submission(sub_id: str, team_id: str, score: int, timestamp: int) -> Submission:
    return Submission(
        id=sub_id, team_id=team_id, problem_id="q1", code="print(1)",
        language="python", timestamp=timestamp, score=score, ai_score=50,
        ai_feedback="ok", proctor_violations=0
    )


def test_empty_repository_is_locked(repository) -> None:
    state = repository.get_state()
    assert state["contest"].status == ContestStatus.LOCKED
    assert state["contest"].start_time is None
    assert state["teams"] == []
    assert state["submissions"] == []


def test_team_upsert_is_idempotent(repository) -> None:
    team = Team(id="alpha", name="Alpha", password="pw", members=["ann"])
    repository.upsert_team(team)
    repository.upsert_team(team)

    teams = repository.list_teams()
    assert len(teams) == 1
    assert teams[0].to_dict() == team.to_dict()


def test_upsert_replaces_in_place(repository) -> None:
    repository.upsert_team(Team(id="a", name="A", password="1"))
    repository.upsert_team(Team(id="b", name="B", password="2"))
    repository.upsert_team(Team(id="a", name="A2", password="3"))

    assert [t.id for t in repository.list_teams()] == ["a", "b"]
    assert repository.get_team("a").name == "A2"


def test_partial_upsert_keeps_server_owned_fields(repository) -> None:
    repository.upsert_team(Team(id="a", name="A", password="1"))
    repository.append_submission(_submission("s1", "a", 80, 1000))
    repository.increment_violation("a")

    stale = Team(id="a", name="Renamed", password="1")
    repository.upsert_team(stale, fields=["name"])

    team = repository.get_team("a")
    assert team.name == "Renamed"
    assert team.total_score == 80
    assert team.violations == 1


def test_partial_upsert_rejects_unknown_fields(repository) -> None:
    with pytest.raises(ValueError):
        repository.upsert_team(Team(id="a", name="A", password="1"), fields=["score"])


def test_append_submission_keeps_best_score(repository) -> None:
    repository.upsert_team(Team(id="a", name="A", password="1"))
    for index, score in enumerate([40, 90, 20]):
        repository.append_submission(_submission(f"s{index}", "a", score, 1000 + index))

    team = repository.get_team("a")
    assert team.total_score == 90
    assert team.last_submission_time == 1002
    assert [s.id for s in repository.list_submissions()] == ["s0", "s1", "s2"]
    assert len(repository.list_submissions("a")) == 3


def test_increment_violation_unknown_team(repository) -> None:
    with pytest.raises(NotFoundError):
        repository.increment_violation("ghost")


def test_concurrent_violations_are_not_lost(repository) -> None:
    repository.upsert_team(Team(id="a", name="A", password="1"))

    def report():
        for _ in range(10):
            repository.increment_violation("a")

    threads = [threading.Thread(target=report) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert repository.get_team("a").violations == 40


def test_problem_upsert_and_delete(repository) -> None:
    repository.upsert_problem(make_problem("q1"))
    repository.upsert_problem(make_problem("q2"))
    updated = make_problem("q1")
    updated.title = "Changed"
    repository.upsert_problem(updated)

    bank = repository.get_contest().problem_bank
    assert [p.id for p in bank] == ["q1", "q2"]
    assert bank[0].title == "Changed"

    repository.delete_problem("q1")
    assert [p.id for p in repository.get_contest().problem_bank] == ["q2"]


def test_upsert_contest_merges_and_clears(repository) -> None:
    repository.upsert_contest({"durationMinutes": 90})
    repository.upsert_contest({"status": ContestStatus.FINISHED, "startTime": 5})
    contest = repository.get_contest()
    assert (contest.status, contest.start_time, contest.duration_minutes) == (ContestStatus.FINISHED, 5, 90)

    repository.upsert_contest({"startTime": None})
    assert repository.get_contest().start_time is None


def test_begin_contest_requires_locked(repository) -> None:
    repository.upsert_problem(make_problem("q9"))
    repository.upsert_team(Team(id="a", name="A", password="1", total_score=50, violations=3))
    repository.upsert_team(Team(id="b", name="B", password="1"))
    repository.append_submission(_submission("s1", "a", 70, 1))
    banks = []

    def draw(bank):
        banks.append([p.id for p in bank])
        return bank[0].id

    assignments = repository.begin_contest(
        {"status": ContestStatus.ACTIVE, "startTime": 100, "durationMinutes": 30}, draw
    )
    assert assignments == {"a": "q9", "b": "q9"}
    assert banks == [["q9"], ["q9"]]
    team = repository.get_team("a")
    assert (team.total_score, team.violations, team.assigned_problem_id) == (0, 0, "q9")
    assert repository.list_submissions() == []
    assert repository.get_contest().status == ContestStatus.ACTIVE

    with pytest.raises(PreconditionError):
        repository.begin_contest(
            {"status": ContestStatus.ACTIVE, "startTime": 200, "durationMinutes": 30}, lambda bank: "q9"
        )


def test_finish_contest_only_moves_active(repository) -> None:
    assert repository.finish_contest() == ContestStatus.LOCKED
    assert repository.get_contest().status == ContestStatus.LOCKED

    repository.begin_contest({"status": ContestStatus.ACTIVE, "startTime": 100, "durationMinutes": 30}, lambda bank: "p1")
    assert repository.finish_contest() == ContestStatus.ACTIVE
    contest = repository.get_contest()
    assert (contest.status, contest.start_time) == (ContestStatus.FINISHED, 100)

    assert repository.finish_contest() == ContestStatus.FINISHED
    assert repository.get_contest().status == ContestStatus.FINISHED


def test_reset_all_keeps_problem_bank(repository) -> None:
    repository.upsert_problem(make_problem("q1"))
    repository.upsert_contest({"durationMinutes": 45})
    repository.upsert_team(Team(id="a", name="A", password="1"))
    repository.begin_contest({"status": ContestStatus.ACTIVE, "startTime": 1, "durationMinutes": 45}, lambda bank: "q1")
    repository.append_submission(_submission("s1", "a", 10, 2))

    repository.reset_all()

    state = repository.get_state()
    assert state["contest"].status == ContestStatus.LOCKED
    assert state["contest"].start_time is None
    assert state["contest"].duration_minutes == 45
    assert [p.id for p in state["contest"].problem_bank] == ["q1"]
    assert state["teams"] == []
    assert state["submissions"] == []


def test_json_storage_persists_across_instances(tmp_path) -> None:
    path = tmp_path / "state" / "data.json"
    store = JSONFileStorage(str(path))
    store.upsert_team(Team(id="a", name="A", password="1"))

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw["teams"][0]["id"] == "a"
    assert JSONFileStorage(str(path)).get_team("a").name == "A"


def test_json_storage_recovers_from_corrupt_file(tmp_path) -> None:
    path = tmp_path / "data.json"
    path.write_text("{not json", encoding="utf-8")

    store = JSONFileStorage(str(path))
    assert store.get_contest().status == ContestStatus.LOCKED


def test_create_storage_selects_backend(tmp_path) -> None:
    config = ConfigManager(str(tmp_path / "missing.json"), load_env=False)
    config.set("storage.json_path", str(tmp_path / "data.json"))
    assert isinstance(create_storage(config), JSONFileStorage)

    config.set("storage.backend", "nosql")
    with pytest.raises(ValueError):
        create_storage(config)


def test_failed_write_leaves_state_untouched(tmp_path, monkeypatch) -> None:
    path = tmp_path / "data.json"
    store = JSONFileStorage(str(path))
    store.upsert_team(Team(id="a", name="A", password="1"))

    def refuse(src, dst):
        raise OSError("disk full")

    with monkeypatch.context() as patch:
        patch.setattr(os, "replace", refuse)
        with pytest.raises(StorageUnavailable):
            store.increment_violation("a")
        with pytest.raises(StorageUnavailable):
            store.reset_all()

    assert store.get_team("a").violations == 0

    store.upsert_contest({"durationMinutes": 30})
    reloaded = JSONFileStorage(str(path))
    assert reloaded.get_team("a").violations == 0
    assert reloaded.get_contest().duration_minutes == 30


def test_failed_mutation_step_is_not_applied(json_storage) -> None:
    json_storage.upsert_team(Team(id="a", name="A", password="1", total_score=10))

    def draw(bank):
        raise RuntimeError("no problems to draw from")

    with pytest.raises(RuntimeError):
        json_storage.begin_contest({"status": ContestStatus.ACTIVE, "startTime": 1, "durationMinutes": 5}, draw)

    assert json_storage.get_contest().status == ContestStatus.LOCKED
    assert json_storage.get_team("a").total_score == 10
