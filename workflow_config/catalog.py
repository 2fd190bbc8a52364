"""
Config -> kernel bridge: entity directory and document catalog.

Translates the configuration's code-based catalog into the kernel's
builder input (``RequiredDocument`` with a resolved ``EntityId`` and a
``Money`` fee).  Entity codes are resolved only through the explicit
lookup table; an unknown code is an error, never a name match or a
pass-through.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from workflow_config.schema import (
    DocumentDef,
    GoodDef,
    LegalEntityDef,
    WorkflowConfigurationSet,
)
from workflow_kernel.domain.stage import RequiredDocument
from workflow_kernel.domain.values import EntityId, Money
from workflow_kernel.exceptions import UnknownGoodError, UnknownLegalEntityError


class LegalEntityDirectory:
    """Explicit code -> legal entity lookup."""

    def __init__(self, entities: Iterable[LegalEntityDef]) -> None:
        self._by_code: dict[str, LegalEntityDef] = {e.code: e for e in entities}

    def resolve(self, code: str) -> LegalEntityDef:
        try:
            return self._by_code[code]
        except KeyError:
            raise UnknownLegalEntityError(code) from None

    def entity_id(self, code: str) -> EntityId:
        return EntityId(self.resolve(code).entity_id)

    @property
    def codes(self) -> tuple[str, ...]:
        return tuple(sorted(self._by_code))


class DocumentCatalog:
    """Goods and their required documents, resolved for the builder."""

    def __init__(
        self,
        goods: Iterable[GoodDef],
        directory: LegalEntityDirectory,
        currency: str = "USD",
    ) -> None:
        self._goods: dict[str, GoodDef] = {g.id: g for g in goods}
        self._directory = directory
        self._currency = currency

    @classmethod
    def from_config(cls, config: WorkflowConfigurationSet) -> DocumentCatalog:
        return cls(
            config.goods,
            LegalEntityDirectory(config.legal_entities),
            currency=config.settings.default_currency,
        )

    @property
    def directory(self) -> LegalEntityDirectory:
        return self._directory

    def good(self, good_id: str) -> GoodDef:
        try:
            return self._goods[good_id]
        except KeyError:
            raise UnknownGoodError(good_id) from None

    def goods_for_procedure(self, procedure_id: str) -> list[GoodDef]:
        return [g for g in self._goods.values() if g.procedure == procedure_id]

    def documents_for_goods(self, good_ids: Sequence[str]) -> list[RequiredDocument]:
        """Required documents of the selected goods, in selection order.

        A document id listed by several goods appears once, at its first
        position.  Raises UnknownGoodError / UnknownLegalEntityError.
        """
        documents: list[RequiredDocument] = []
        seen: set[str] = set()
        for good_id in good_ids:
            for doc in self.good(good_id).required_documents:
                if doc.id in seen:
                    continue
                seen.add(doc.id)
                documents.append(self._to_required_document(doc))
        return documents

    def total_fees(self, documents: Iterable[RequiredDocument]) -> Money:
        total = Money.zero(self._currency)
        for doc in documents:
            if doc.fee is not None:
                total = total + doc.fee
        return total

    def _to_required_document(self, doc: DocumentDef) -> RequiredDocument:
        entity = self._directory.resolve(doc.legal_entity)
        return RequiredDocument(
            id=doc.id,
            name=doc.name,
            legal_entity_id=EntityId(entity.entity_id),
            legal_entity_name=entity.name,
            is_required=doc.is_required,
            fee=Money(doc.fee_minor, self._currency) if doc.fee_minor else None,
            description=doc.description,
        )
