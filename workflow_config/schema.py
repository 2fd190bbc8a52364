"""
WorkflowConfigurationSet schema.

Defines the human-authored, reviewable source artifact for workflow
configuration: runtime settings, the explicit legal-entity lookup table
and the document catalog (procedures -> goods -> required documents).
YAML sets are parsed into these types by the loader and checked by the
validator before anything else sees them.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowSettings:
    """Runtime settings for an engine deployment."""

    database_url: str = "sqlite://"
    default_currency: str = "USD"
    log_level: str = "INFO"


# ---------------------------------------------------------------------------
# Legal entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LegalEntityDef:
    """One entry of the code -> entity id lookup table.

    Several codes may share an ``entity_id`` (a combined operation routed
    to one organisation).
    """

    code: str
    entity_id: UUID
    name: str


# ---------------------------------------------------------------------------
# Document catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DocumentDef:
    """A document a good requires, and the entity that issues it."""

    id: str
    name: str
    legal_entity: str  # code into legal_entities
    description: str = ""
    is_required: bool = True
    fee_minor: int | None = None  # in settings.default_currency


@dataclass(frozen=True)
class GoodDef:
    id: str
    name: str
    category: str
    procedure: str
    required_documents: tuple[DocumentDef, ...] = ()


@dataclass(frozen=True)
class ProcedureDef:
    """An import or export procedure and the goods it covers."""

    id: str
    name: str
    description: str = ""
    goods: tuple[GoodDef, ...] = ()


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowConfigurationSet:
    """A complete, parsed configuration set.

    ``checksum`` is the SHA-256 of the canonical JSON form of the source
    YAML and identifies the exact configuration in logs.
    """

    config_id: str
    version: int
    settings: WorkflowSettings
    legal_entities: tuple[LegalEntityDef, ...]
    procedures: tuple[ProcedureDef, ...]
    checksum: str = ""

    @property
    def goods(self) -> tuple[GoodDef, ...]:
        return tuple(g for p in self.procedures for g in p.goods)
