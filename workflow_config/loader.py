"""
YAML loader (``workflow_config.loader``).

Responsibility
--------------
Reads a configuration set YAML file and parses it into the frozen
dataclasses of ``workflow_config.schema``.  Parsing is purely structural:
semantic checks (unknown entity codes, negative fees, ...) belong to
``workflow_config.validator``.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys in parsed dict  -> ``KeyError`` propagates.
* Malformed entity UUID  -> ``ValueError`` from ``uuid.UUID``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml

from workflow_config.schema import (
    DocumentDef,
    GoodDef,
    LegalEntityDef,
    ProcedureDef,
    WorkflowConfigurationSet,
    WorkflowSettings,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_settings(data: dict[str, Any]) -> WorkflowSettings:
    defaults = WorkflowSettings()
    return WorkflowSettings(
        database_url=data.get("database_url", defaults.database_url),
        default_currency=data.get("default_currency", defaults.default_currency),
        log_level=str(data.get("log_level", defaults.log_level)).upper(),
    )


def parse_legal_entity(data: dict[str, Any]) -> LegalEntityDef:
    return LegalEntityDef(
        code=data["code"],
        entity_id=UUID(str(data["id"])),
        name=data["name"],
    )


def parse_document(data: dict[str, Any]) -> DocumentDef:
    fee = data.get("fee")
    return DocumentDef(
        id=data["id"],
        name=data["name"],
        legal_entity=data["legal_entity"],
        description=data.get("description", ""),
        is_required=data.get("required", True),
        fee_minor=int(fee) if fee is not None else None,
    )


def parse_good(data: dict[str, Any], procedure_id: str) -> GoodDef:
    return GoodDef(
        id=data["id"],
        name=data["name"],
        category=data.get("category", ""),
        procedure=procedure_id,
        required_documents=tuple(
            parse_document(d) for d in data.get("required_documents", [])
        ),
    )


def parse_procedure(data: dict[str, Any]) -> ProcedureDef:
    return ProcedureDef(
        id=data["id"],
        name=data["name"],
        description=data.get("description", ""),
        goods=tuple(parse_good(g, data["id"]) for g in data.get("goods", [])),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_configuration_set(data: dict[str, Any]) -> WorkflowConfigurationSet:
    """Parse a complete configuration set from its YAML dict."""
    return WorkflowConfigurationSet(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        settings=parse_settings(data.get("settings") or {}),
        legal_entities=tuple(
            parse_legal_entity(e) for e in data.get("legal_entities", [])
        ),
        procedures=tuple(parse_procedure(p) for p in data.get("procedures", [])),
        checksum=compute_checksum(data),
    )


def load_configuration_set(path: Path) -> WorkflowConfigurationSet:
    return parse_configuration_set(load_yaml_file(path))
