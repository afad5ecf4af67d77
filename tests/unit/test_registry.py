from __future__ import annotations

import pytest

from codebattle.engine.errors import AuthenticationError, NotFoundError, ValidationError
from codebattle.engine.registry import TeamRegistry
from codebattle.models.models import UserRole, normalize_team_id


def test_team_id_is_derived_from_name() -> None:
    assert normalize_team_id("Null Pointers") == "null-pointers"
    assert normalize_team_id("A\tB  C") == "a-b--c"


def test_create_and_list(json_storage) -> None:
    registry = TeamRegistry(json_storage)
    team = registry.create("Null Pointers", "secret", members=["ann", "bo"])

    assert team.id == "null-pointers"
    assert team.total_score == 0 and team.violations == 0
    assert [t.id for t in registry.list()] == ["null-pointers"]


def test_same_derived_id_replaces_team(json_storage) -> None:
    registry = TeamRegistry(json_storage)
    registry.create("Null Pointers", "one")
    registry.create("null pointers", "two")

    teams = registry.list()
    assert len(teams) == 1
    assert teams[0].password == "two"


@pytest.mark.parametrize("name,password", [("", "pw"), ("  ", "pw"), ("Team", ""), ("Team", "   ")])
def test_create_requires_name_and_password(json_storage, name, password) -> None:
    with pytest.raises(ValidationError):
        TeamRegistry(json_storage).create(name, password)


def test_get_and_delete(json_storage) -> None:
    registry = TeamRegistry(json_storage)
    registry.create("Alpha", "pw")
    registry.delete("alpha")
    with pytest.raises(NotFoundError):
        registry.get("alpha")


def test_team_login_by_name_or_id(json_storage) -> None:
    registry = TeamRegistry(json_storage)
    registry.create("Null Pointers", "secret")

    by_name = registry.login("NULL POINTERS", "secret", UserRole.TEAM)
    by_id = registry.login("null-pointers", "secret", "TEAM")
    assert by_name.to_dict() == {"id": "null-pointers", "role": "TEAM", "name": "Null Pointers"}
    assert by_id.id == by_name.id


def test_team_login_failures(json_storage) -> None:
    registry = TeamRegistry(json_storage)
    registry.create("Alpha", "secret")

    with pytest.raises(AuthenticationError, match="Team not found."):
        registry.login("Beta", "secret", UserRole.TEAM)
    with pytest.raises(AuthenticationError, match="Incorrect password for this team."):
        registry.login("Alpha", "Secret", UserRole.TEAM)


def test_admin_login(json_storage) -> None:
    registry = TeamRegistry(json_storage, admin_username="root", admin_password="toor")

    identity = registry.login("root", "toor", UserRole.ADMIN)
    assert (identity.id, identity.role, identity.name) == ("admin", UserRole.ADMIN, "Administrator")
    with pytest.raises(AuthenticationError, match="Invalid admin credentials."):
        registry.login("admin", "admin", UserRole.ADMIN)
