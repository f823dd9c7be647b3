"""Tests for template records and managed-role declaration files."""

import json
import tempfile
from pathlib import Path

import pytest
import yaml

from rolekeeper.errors import ConfigurationError
from rolekeeper.membership.policy import MembershipPolicy
from rolekeeper.models.role import Color
from rolekeeper.templates.config import (
    load_managed_roles,
    parse_managed_roles,
    template_from_record,
    template_to_record,
)
from rolekeeper.templates.flags import AttributeFlag
from rolekeeper.templates.template import RoleTemplate


def _declarations() -> dict:
    return {
        "managed_roles": [
            {
                "scope_id": 42,
                "name": "VIP",
                "color": "#f1c40f",
                "hoisted": True,
                "allow_list": [1, "2"],
                "policy": "list_only",
                "properties_to_enforce": 3,
            },
            {"name": "Broken"},
            {"scope_id": "42", "name": "Bad flags", "comparison_method": 1024},
            {"scope_id": "42", "name": "Muted", "enforce_membership": False},
        ]
    }


def test_record_omits_unmanaged_attributes():
    template = RoleTemplate(scope_id="42", name="VIP", color=Color.GOLD)
    record = template_to_record(template)
    assert record == {
        "scope_id": "42",
        "name": "VIP",
        "color": Color.GOLD.value,
        "comparison_method": int(AttributeFlag.ALL),
    }


def test_record_round_trip():
    template = RoleTemplate(
        scope_id="42",
        name="Staff",
        position=2,
        mentionable=False,
        permissions=0,
        comparison_policy=AttributeFlag.NAME | AttributeFlag.POSITION,
    )
    restored = template_from_record(template_to_record(template))
    assert restored == template
    assert restored.color is None
    assert restored.hoisted is None


def test_config_data_round_trip():
    template = RoleTemplate(scope_id="42", name="VIP", hoisted=True)
    data = template.to_config_data()
    assert json.loads(data)["hoisted"] is True
    assert RoleTemplate.from_config_data(data) == template


def test_missing_scope_is_rejected():
    with pytest.raises(ConfigurationError, match="scope_id"):
        template_from_record({"name": "VIP"})


def test_malformed_record_is_rejected():
    with pytest.raises(ConfigurationError):
        template_from_record({"scope_id": "1", "color": "not a color"})
    with pytest.raises(ConfigurationError):
        RoleTemplate.from_config_data("{not json")


def test_parse_skips_bad_entries():
    result = parse_managed_roles(_declarations())

    assert [r.name for r in result.records] == ["VIP", "Muted"]
    assert len(result.errors) == 2
    assert "scope_id" in result.errors[0]
    assert "Bad flags" in result.errors[1]
    assert not result.ok

    vip = result.records[0]
    assert vip.scope_id == "42"
    assert vip.allow_list == ["1", "2"]
    assert vip.policy is MembershipPolicy.LIST_ONLY
    assert vip.enforced_flags == AttributeFlag.NAME | AttributeFlag.COLOR
    assert vip.to_template().color == Color.GOLD

    muted = result.records[1]
    assert muted.policy is None
    assert muted.enforced_flags is None
    assert not muted.enforce_membership


def test_parse_rejects_wrong_shape():
    result = parse_managed_roles(["not", "a", "mapping"])
    assert result.records == []
    assert len(result.errors) == 1
    assert parse_managed_roles(None).ok


def test_load_yaml_and_json():
    with tempfile.TemporaryDirectory() as tmpdir:
        yaml_path = Path(tmpdir) / "roles.yaml"
        yaml_path.write_text(yaml.safe_dump(_declarations()))
        json_path = Path(tmpdir) / "roles.json"
        json_path.write_text(json.dumps(_declarations()))

        from_yaml = load_managed_roles(yaml_path)
        from_json = load_managed_roles(json_path)

        assert [r.name for r in from_yaml.records] == ["VIP", "Muted"]
        assert [r.name for r in from_json.records] == ["VIP", "Muted"]
        assert from_yaml.source == str(yaml_path)


def test_load_unreadable_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ConfigurationError):
            load_managed_roles(Path(tmpdir) / "missing.yaml")

        broken = Path(tmpdir) / "broken.json"
        broken.write_text("{")
        with pytest.raises(ConfigurationError):
            load_managed_roles(broken)
