"""
Tests for the config -> kernel bridge: LegalEntityDirectory and
DocumentCatalog, and building a workflow from selected goods.
"""

from uuid import uuid4

import pytest

from workflow_config import DocumentCatalog, get_active_config
from workflow_config.catalog import LegalEntityDirectory
from workflow_config.schema import DocumentDef, GoodDef, LegalEntityDef
from workflow_kernel.domain.builder import build_workflow
from workflow_kernel.domain.stage import StageStatus
from workflow_kernel.domain.values import EntityId, Money
from workflow_kernel.exceptions import UnknownGoodError, UnknownLegalEntityError

SCA_ID = EntityId("0091e7e1-1c0d-4bf0-a885-eae3e4278f20")
COC_ID = EntityId("fb12cb60-9f2a-47fc-90fa-f07841331962")


@pytest.fixture(scope="module")
def catalog():
    return DocumentCatalog.from_config(get_active_config())


class TestLegalEntityDirectory:

    def test_resolve_by_code(self, catalog):
        assert catalog.directory.entity_id("sca") == SCA_ID
        assert catalog.directory.resolve("coc").name == "Chamber of Commerce"
        assert "ssmo_moa" in catalog.directory.codes

    def test_unknown_code_is_an_error(self, catalog):
        with pytest.raises(UnknownLegalEntityError) as exc_info:
            catalog.directory.resolve("Sudan Customs Authority")
        assert exc_info.value.entity_code == "Sudan Customs Authority"


class TestDocumentCatalog:

    def test_commercial_export_documents(self, catalog):
        documents = catalog.documents_for_goods(["commercial_goods"])

        assert [d.id for d in documents] == [
            "export_declaration",
            "export_license",
            "certificate_of_origin",
        ]
        assert documents[0].legal_entity_id == SCA_ID
        assert documents[2].legal_entity_id == COC_ID
        assert documents[0].fee == Money(5000)
        assert catalog.total_fees(documents) == Money(27500)

    def test_goods_for_procedure(self, catalog):
        exports = {g.id for g in catalog.goods_for_procedure("export")}
        assert exports == {
            "commercial_goods", "fruits_vegetables", "livestock", "gold", "oil",
        }
        assert catalog.goods_for_procedure("transit") == []

    def test_selection_order_and_dedup(self):
        directory = LegalEntityDirectory(
            [LegalEntityDef("sca", SCA_ID.value, "Customs")]
        )
        shared = DocumentDef("declaration", "Declaration", "sca", fee_minor=100)
        catalog = DocumentCatalog(
            [
                GoodDef("a", "A", "Cat", "export", (DocumentDef("permit_a", "A", "sca"), shared)),
                GoodDef("b", "B", "Cat", "export", (shared, DocumentDef("permit_b", "B", "sca"))),
            ],
            directory,
        )

        documents = catalog.documents_for_goods(["b", "a"])
        assert [d.id for d in documents] == ["declaration", "permit_b", "permit_a"]

    def test_zero_fee_becomes_no_fee(self):
        directory = LegalEntityDirectory([LegalEntityDef("sca", SCA_ID.value, "Customs")])
        catalog = DocumentCatalog(
            [GoodDef("a", "A", "Cat", "export", (DocumentDef("free", "Free", "sca", fee_minor=0),))],
            directory,
        )
        (document,) = catalog.documents_for_goods(["a"])
        assert document.fee is None
        assert not document.has_fee

    def test_unknown_good_is_an_error(self, catalog):
        with pytest.raises(UnknownGoodError) as exc_info:
            catalog.documents_for_goods(["commercial_goods", "unicorns"])
        assert exc_info.value.good_id == "unicorns"

    def test_document_with_unknown_entity(self):
        catalog = DocumentCatalog(
            [GoodDef("a", "A", "Cat", "export", (DocumentDef("x", "X", "nobody"),))],
            LegalEntityDirectory([]),
        )
        with pytest.raises(UnknownLegalEntityError):
            catalog.documents_for_goods(["a"])


class TestBuildFromCatalog:

    def test_gold_export_builds_four_paid_stages(self, catalog):
        documents = catalog.documents_for_goods(["gold"])
        workflow = build_workflow(documents, uuid4(), "ACID-GOLD")

        assert workflow.total_stages == 4
        assert all(s.payment_required for s in workflow.stages)
        assert workflow.stages[0].status == StageStatus.PAYMENT_REQUIRED
        assert workflow.stages[0].legal_entity_name == "Ministry of Minerals"
