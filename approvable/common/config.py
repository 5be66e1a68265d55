"""Configuration management for approvable.

Handles loading and validation of the YAML file that declares which fields
of which models require approval. Field sets are resolved once at startup
into a ``FieldPolicy``.

Example::

    approvable_fields: []          # empty: every column needs approval
    excluded_fields: [updated_at]
    models:
      fake_models:
        approvable_fields: [name]
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping

import yaml

from .logger import get_logger

logger = get_logger(__name__)


@dataclass
class ModelFieldConfig:
    """Per-model override of the approvable field set."""

    approvable_fields: List[str] = field(default_factory=list)
    excluded_fields: List[str] = field(default_factory=list)


@dataclass
class ApprovalConfig:
    """Top-level approval field configuration."""

    approvable_fields: List[str] = field(default_factory=list)
    excluded_fields: List[str] = field(default_factory=list)
    models: Dict[str, ModelFieldConfig] = field(default_factory=dict)


def _string_list(value: Any, key: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise TypeError(f"'{key}' must be a list of field names")
    return list(value)


def parse_model_config(model_dict: Dict[str, Any]) -> ModelFieldConfig:
    """Parse a per-model configuration dictionary.

    Args:
        model_dict: Model configuration dictionary

    Returns:
        ModelFieldConfig instance
    """
    return ModelFieldConfig(
        approvable_fields=_string_list(model_dict.get("approvable_fields"), "approvable_fields"),
        excluded_fields=_string_list(model_dict.get("excluded_fields"), "excluded_fields"),
    )


def parse_config(config_dict: Dict[str, Any]) -> ApprovalConfig:
    """Parse the full configuration dictionary.

    Args:
        config_dict: Full configuration dictionary

    Returns:
        ApprovalConfig instance
    """
    models = {}
    for model_type, model_dict in (config_dict.get("models") or {}).items():
        models[model_type] = parse_model_config(model_dict or {})

    return ApprovalConfig(
        approvable_fields=_string_list(config_dict.get("approvable_fields"), "approvable_fields"),
        excluded_fields=_string_list(config_dict.get("excluded_fields"), "excluded_fields"),
        models=models,
    )


def load_config(config_path: str) -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_file.open("r") as f:
        config = yaml.safe_load(f)

    if config is None:
        config = {}

    if not isinstance(config, dict):
        raise TypeError(
            f"Configuration root must be a mapping, got {type(config).__name__}"
        )

    return _expand_env_vars(config)


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand environment variables in configuration."""
    if isinstance(obj, dict):
        return {key: _expand_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return os.path.expandvars(obj)
    else:
        return obj


def load_typed_config(config_path: str) -> ApprovalConfig:
    """Load and parse configuration into typed dataclass.

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
    """
    return parse_config(load_config(config_path))


def approvable_fields_for(
    config: ApprovalConfig, model_type: str, columns: Iterable[str]
) -> FrozenSet[str]:
    """Compute the approvable fields of one model type.

    A per-model allowlist wins over the global one. An empty allowlist
    means every column. Excluded fields (global and per-model) are removed.

    Args:
        config: ApprovalConfig instance
        model_type: Morph discriminator of the model
        columns: Non primary key column names of the model

    Returns:
        Frozen set of field names
    """
    columns = list(columns)
    override = config.models.get(model_type, ModelFieldConfig())

    allowlist = override.approvable_fields or config.approvable_fields
    unknown = [name for name in allowlist if name not in columns]
    if unknown:
        logger.warning(f"Ignoring unknown approvable fields for {model_type}: {unknown}")

    selected = [name for name in columns if not allowlist or name in allowlist]
    excluded = set(config.excluded_fields) | set(override.excluded_fields)
    return frozenset(name for name in selected if name not in excluded)


class FieldPolicy:
    """Approvable field sets per model type, resolved once."""

    def __init__(self, fields_by_type: Mapping[str, FrozenSet[str]]):
        self._fields = dict(fields_by_type)

    @classmethod
    def resolve(
        cls, config: ApprovalConfig, columns_by_type: Mapping[str, Iterable[str]]
    ) -> "FieldPolicy":
        """Resolve every registered model type against the configuration."""
        for model_type in config.models:
            if model_type not in columns_by_type:
                logger.warning(f"Configuration names unregistered model type: {model_type}")

        return cls({
            model_type: approvable_fields_for(config, model_type, columns)
            for model_type, columns in columns_by_type.items()
        })

    def approvable_fields(self, model_type: str) -> FrozenSet[str]:
        """Approvable fields of a model type (empty when unknown)."""
        return self._fields.get(model_type, frozenset())

    def model_types(self) -> List[str]:
        return list(self._fields)
