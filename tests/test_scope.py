"""Tests for the scope registry."""

from rolekeeper.models.scope import Scope, ScopeRegistry


def test_same_container_same_scope():
    scopes = ScopeRegistry()
    first = scopes.get(42, "Guild")
    second = scopes.get("42")

    assert first is second
    assert first == Scope("42", "Guild")
    assert str(first) == "Guild"
    assert 42 in scopes
    assert len(scopes) == 1


def test_find_does_not_register():
    scopes = ScopeRegistry()
    assert scopes.find("7") is None
    assert "7" not in scopes
    scopes.get("7")
    assert [s.id for s in scopes] == ["7"]
    assert str(scopes.find(7)) == "7"
