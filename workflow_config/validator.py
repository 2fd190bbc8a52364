"""
Configuration Validator (``workflow_config.validator``).

Responsibility
--------------
Validates a ``WorkflowConfigurationSet`` before it is handed out, so a
document can never be routed to an entity the directory does not know.

Invariants enforced
-------------------
* Entity code uniqueness -- each code maps to exactly one entity id.
* Entity resolution -- every document names a known entity code.
* Catalog uniqueness -- procedure and good ids are unique.
* Fees -- document fees are non-negative integers in minor units.
* Currency -- ``settings.default_currency`` is a three-letter code.

Failure modes
-------------
* Validation errors -> ``get_active_config`` refuses the set.
* Validation warnings -> logged; the set is still usable.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from workflow_config.schema import WorkflowConfigurationSet


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    ``is_valid`` returns ``True`` only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(config: WorkflowConfigurationSet) -> ConfigValidationResult:
    """Validate a configuration set."""
    result = ConfigValidationResult()

    _validate_settings(config, result)
    _validate_entity_codes(config, result)
    _validate_catalog_ids(config, result)
    _validate_documents(config, result)

    return result


def _validate_settings(
    config: WorkflowConfigurationSet, result: ConfigValidationResult
) -> None:
    currency = config.settings.default_currency
    if not (isinstance(currency, str) and len(currency) == 3 and currency.isalpha() and currency.isupper()):
        result.add_error(
            f"settings.default_currency must be a 3-letter ISO code, got {currency!r}"
        )


def _validate_entity_codes(
    config: WorkflowConfigurationSet, result: ConfigValidationResult
) -> None:
    """Check that entity codes are unique."""
    seen: set[str] = set()
    for entity in config.legal_entities:
        if entity.code in seen:
            result.add_error(f"Duplicate legal entity code: {entity.code}")
        seen.add(entity.code)
    if not config.legal_entities:
        result.add_warning("No legal entities declared")


def _validate_catalog_ids(
    config: WorkflowConfigurationSet, result: ConfigValidationResult
) -> None:
    procedure_ids: set[str] = set()
    for procedure in config.procedures:
        if procedure.id in procedure_ids:
            result.add_error(f"Duplicate procedure: {procedure.id}")
        procedure_ids.add(procedure.id)

    good_ids: set[str] = set()
    for good in config.goods:
        if good.id in good_ids:
            result.add_error(f"Duplicate good: {good.id}")
        good_ids.add(good.id)
        if not good.required_documents:
            result.add_warning(f"Good '{good.id}' requires no documents")


def _validate_documents(
    config: WorkflowConfigurationSet, result: ConfigValidationResult
) -> None:
    """Check entity resolution and fees for every document."""
    known = {e.code for e in config.legal_entities}
    owners: dict[str, str] = {}
    for good in config.goods:
        for doc in good.required_documents:
            if doc.legal_entity not in known:
                result.add_error(
                    f"Good '{good.id}' document '{doc.id}': unknown legal "
                    f"entity code '{doc.legal_entity}'"
                )
            if doc.fee_minor is not None and doc.fee_minor < 0:
                result.add_error(
                    f"Good '{good.id}' document '{doc.id}': negative fee {doc.fee_minor}"
                )
            previous = owners.setdefault(doc.id, doc.legal_entity)
            if previous != doc.legal_entity:
                result.add_warning(
                    f"Document '{doc.id}' is issued by '{previous}' and "
                    f"'{doc.legal_entity}' in different goods"
                )
