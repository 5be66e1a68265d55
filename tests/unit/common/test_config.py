"""Tests for approval field configuration."""

import logging

import pytest
import yaml

from approvable.common.config import (
    ApprovalConfig,
    FieldPolicy,
    ModelFieldConfig,
    approvable_fields_for,
    load_config,
    load_typed_config,
    parse_config,
    parse_model_config,
)

COLUMNS = ["title", "body", "views", "updated_at"]


class TestParseConfig:
    """Tests for configuration parsing."""

    def test_parse_model_config(self):
        model = parse_model_config({"approvable_fields": ["title"], "excluded_fields": ["views"]})

        assert model.approvable_fields == ["title"]
        assert model.excluded_fields == ["views"]

    def test_parse_full_config(self, sample_config):
        config = parse_config(sample_config)

        assert config.approvable_fields == []
        assert config.excluded_fields == []
        assert config.models["fake_articles"].approvable_fields == ["title", "body"]

    def test_parse_empty_config(self):
        config = parse_config({})

        assert config.approvable_fields == []
        assert config.models == {}

    def test_null_sections(self):
        config = parse_config({"approvable_fields": None, "models": {"fake_models": None}})

        assert config.approvable_fields == []
        assert config.models["fake_models"] == ModelFieldConfig()

    def test_invalid_field_list(self):
        with pytest.raises(TypeError, match="approvable_fields"):
            parse_config({"approvable_fields": "title"})


class TestApprovableFields:
    """Tests for field set resolution."""

    def test_empty_allowlist_means_all(self):
        fields = approvable_fields_for(ApprovalConfig(), "fake_articles", COLUMNS)
        assert fields == frozenset(COLUMNS)

    def test_global_allowlist(self):
        config = ApprovalConfig(approvable_fields=["title"])
        assert approvable_fields_for(config, "fake_articles", COLUMNS) == {"title"}

    def test_model_allowlist_wins(self):
        config = ApprovalConfig(
            approvable_fields=["title"],
            models={"fake_articles": ModelFieldConfig(approvable_fields=["body"])},
        )
        assert approvable_fields_for(config, "fake_articles", COLUMNS) == {"body"}

    def test_excluded_fields(self):
        config = ApprovalConfig(
            excluded_fields=["updated_at"],
            models={"fake_articles": ModelFieldConfig(excluded_fields=["views"])},
        )
        assert approvable_fields_for(config, "fake_articles", COLUMNS) == {"title", "body"}

    def test_unknown_field_warns(self, caplog):
        config = ApprovalConfig(approvable_fields=["title", "subtitle"])

        with caplog.at_level(logging.WARNING, logger="approvable.common.config"):
            fields = approvable_fields_for(config, "fake_articles", COLUMNS)

        assert fields == {"title"}
        assert "subtitle" in caplog.text


class TestFieldPolicy:

    def test_resolve(self, sample_config):
        policy = FieldPolicy.resolve(
            parse_config(sample_config),
            {"fake_articles": COLUMNS, "fake_models": ["name", "meta"]},
        )

        assert policy.approvable_fields("fake_articles") == {"title", "body"}
        assert policy.approvable_fields("fake_models") == {"name", "meta"}
        assert sorted(policy.model_types()) == ["fake_articles", "fake_models"]

    def test_unknown_type_has_no_fields(self):
        policy = FieldPolicy({})
        assert policy.approvable_fields("missing") == frozenset()

    def test_unregistered_type_warns(self, caplog):
        config = ApprovalConfig(models={"ghosts": ModelFieldConfig()})

        with caplog.at_level(logging.WARNING, logger="approvable.common.config"):
            FieldPolicy.resolve(config, {})

        assert "ghosts" in caplog.text


class TestLoadConfig:
    """Tests for loading configuration from file."""

    def test_load_yaml_config(self, tmp_path, sample_config):
        config_file = tmp_path / "approvals.yaml"
        config_file.write_text(yaml.dump(sample_config))

        assert load_config(str(config_file)) == sample_config

    def test_load_config_nonexistent(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nonexistent.yaml"))

    def test_load_empty_file(self, tmp_path):
        config_file = tmp_path / "approvals.yaml"
        config_file.write_text("")

        assert load_config(str(config_file)) == {}

    def test_load_non_mapping(self, tmp_path):
        config_file = tmp_path / "approvals.yaml"
        config_file.write_text("- title\n- body\n")

        with pytest.raises(TypeError):
            load_config(str(config_file))

    def test_load_config_env_expansion(self, tmp_path, monkeypatch):
        monkeypatch.setenv("APPROVED_FIELD", "title")
        config_file = tmp_path / "approvals.yaml"
        config_file.write_text("approvable_fields:\n  - ${APPROVED_FIELD}\n")

        assert load_config(str(config_file))["approvable_fields"] == ["title"]

    def test_load_typed_config(self, tmp_path):
        config_file = tmp_path / "approvals.yaml"
        config_file.write_text(
            "excluded_fields: [updated_at]\n"
            "models:\n"
            "  fake_models:\n"
            "    approvable_fields: [name]\n"
        )

        config = load_typed_config(str(config_file))

        assert isinstance(config, ApprovalConfig)
        assert config.excluded_fields == ["updated_at"]
        assert config.models["fake_models"].approvable_fields == ["name"]
