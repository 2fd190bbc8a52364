"""
workflow_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files directly.  Returns a validated, frozen
    ``WorkflowConfigurationSet``; ``DocumentCatalog.from_config`` turns it
    into builder input.

Architecture position:
    Configuration -- YAML-driven, validated on load.  This package sits
    above ``workflow_kernel``.  The kernel MUST NEVER import from
    ``workflow_config``; ``catalog.py`` translates configuration into
    kernel types.

Failure modes:
    - ``FileNotFoundError`` -- no configuration set with the requested name.
    - ``ValueError`` -- the set fails validation.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``WORKFLOW_CONFIG_TRACE`` log entry containing the config id, version,
    checksum and catalog sizes, tying every built workflow back to the
    configuration that defined its stages.
"""

from __future__ import annotations

import logging
from pathlib import Path

from workflow_config.catalog import DocumentCatalog, LegalEntityDirectory
from workflow_config.loader import load_configuration_set
from workflow_config.schema import WorkflowConfigurationSet
from workflow_config.validator import validate_configuration

_logger = logging.getLogger("workflow_kernel.config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"

__all__ = [
    "DocumentCatalog",
    "LegalEntityDirectory",
    "WorkflowConfigurationSet",
    "get_active_config",
]


def get_active_config(
    name: str = "default",
    config_dir: Path | None = None,
) -> WorkflowConfigurationSet:
    """The ONLY public configuration entrypoint.

    Guarantees:
        - The returned set has passed validation: every document resolves
          to a declared legal entity and every fee is non-negative.
        - A ``WORKFLOW_CONFIG_TRACE`` log entry is emitted on every
          successful call.

    Args:
        name: Configuration set name; ``<name>.yaml`` in the sets directory.
        config_dir: Override path to the sets directory.
            Defaults to workflow_config/sets/.

    Raises:
        FileNotFoundError: If the set does not exist.
        ValueError: If configuration validation fails.
    """
    sets_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR
    path = sets_dir / f"{name}.yaml"
    if not path.is_file():
        raise FileNotFoundError(f"Configuration set '{name}' not found in {sets_dir}")

    config_set = load_configuration_set(path)

    validation = validate_configuration(config_set)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning(
            "workflow_config_warning",
            extra={"config_set_id": config_set.config_id, "detail": warning},
        )

    _logger.info(
        "WORKFLOW_CONFIG_TRACE",
        extra={
            "trace_type": "WORKFLOW_CONFIG_TRACE",
            "config_set_id": config_set.config_id,
            "config_set_version": config_set.version,
            "checksum": config_set.checksum,
            "legal_entity_count": len(config_set.legal_entities),
            "procedure_count": len(config_set.procedures),
            "good_count": len(config_set.goods),
        },
    )

    return config_set
