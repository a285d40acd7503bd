"""Public configuration API: schema validation and layered loading."""

from hachiko.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    effective_config,
    load_config,
)
from hachiko.config.schema import (
    AGENT_KINDS,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    DEFAULT_CONFIG,
    HachikoConfig,
    agent_settings,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
    required_secret_envs,
    validate_config,
)

__all__ = [
    "AGENT_KINDS",
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "HachikoConfig",
    "agent_settings",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "effective_config",
    "load_config",
    "merge_config",
    "redact_config",
    "required_secret_envs",
    "validate_config",
]
