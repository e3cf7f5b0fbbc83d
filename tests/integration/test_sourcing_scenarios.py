"""
End-to-end sourcing scenarios through the real services.

Validates:
- The reference walk: optimizer choice with and without an ETA ceiling,
  award of 60 of 100, confirmation, full receipt, cancellation after receipt
- A two-supplier requisition followed through to Completed
- Award then cancel of every created order restores pending quantities
"""

from decimal import Decimal

import pytest

from sourcing_modules.awards.models import AwardCommitStatus
from sourcing_modules.purchase_orders.models import POStatus
from sourcing_modules.quotations.models import QuotationStatus
from sourcing_modules.requisitions.models import LedgerEntryKind, RequisitionStatus


@pytest.fixture
def two_quotations(sourcing_flow):
    """P-100 x 100 with A{100 @ 10, +5d} and B{100 @ 9, +10d}."""
    requisition = sourcing_flow.requisition({"P-100": 100})
    quote_a = sourcing_flow.quotation(requisition.id, "S-A", {"P-100": (100, 10, 5)})
    quote_b = sourcing_flow.quotation(requisition.id, "S-B", {"P-100": (100, 9, 10)})
    return requisition, quote_a, quote_b


class TestReferenceWalk:
    def test_optimizer_with_ceiling_picks_faster_offer(self, two_quotations, award_service):
        requisition, quote_a, _ = two_quotations

        suggestion = award_service.suggest(requisition.id, eta_ceiling_days=7).suggestion_for("P-100")

        assert suggestion.offer.quotation_id == quote_a.id
        assert suggestion.award_quantity == Decimal("100")

    def test_optimizer_without_ceiling_picks_cheaper_offer(self, two_quotations, award_service):
        requisition, _, quote_b = two_quotations

        suggestion = award_service.suggest(requisition.id).suggestion_for("P-100")

        assert suggestion.offer.quotation_id == quote_b.id
        assert suggestion.award_quantity == Decimal("100")

    def test_award_confirm_receive_cancel(self, two_quotations, sourcing_flow, purchase_order_service):
        requisition, quote_a, quote_b = two_quotations

        # award 60 from A
        result = sourcing_flow.award(requisition.id, [sourcing_flow.accept(quote_a, "P-100", 60)])
        assert result.status == AwardCommitStatus.COMMITTED
        (po_id,) = result.purchase_order_ids
        assert sourcing_flow.line(requisition.id).pending_po_quantity == Decimal("60")
        assert sourcing_flow.requisitions.get_requisition(requisition.id).status == RequisitionStatus.PO_IN_PROGRESS
        assert purchase_order_service.get_purchase_order(po_id).status == POStatus.PENDING
        assert sourcing_flow.quotations.get_quotation(quote_a.id).status == QuotationStatus.AWARDED
        assert sourcing_flow.quotations.get_quotation(quote_b.id).status == QuotationStatus.LOST

        # confirm
        sourcing_flow.confirm(po_id)
        line = sourcing_flow.line(requisition.id)
        assert line.purchased_quantity == 0
        assert line.pending_po_quantity == 0
        assert sourcing_flow.requisitions.get_requisition(requisition.id).status == RequisitionStatus.PO_IN_PROGRESS

        # receive everything
        receipt = sourcing_flow.receive(po_id, {"P-100": (60, 0, 0)})
        assert receipt.purchase_order_status == POStatus.FULLY_RECEIVED
        assert sourcing_flow.line(requisition.id).purchased_quantity == Decimal("60")

        # cancel after receipt
        canceled = purchase_order_service.transition(po_id, POStatus.CANCELED, sourcing_flow.actor)
        (reversal,) = canceled.requisition_outcomes
        assert reversal.kind == LedgerEntryKind.REVERSAL
        assert reversal.purchased_deltas == {"P-100": Decimal("-60")}
        line = sourcing_flow.line(requisition.id)
        assert line.purchased_quantity == 0
        assert line.pending_po_quantity == 0
        assert sourcing_flow.requisitions.get_requisition(requisition.id).status == RequisitionStatus.QUOTED

        kinds = [e.kind for e in sourcing_flow.requisitions.ledger_history(requisition.id)]
        assert kinds == [
            LedgerEntryKind.AWARD,
            LedgerEntryKind.CONFIRMATION,
            LedgerEntryKind.RECEIPT,
            LedgerEntryKind.REVERSAL,
        ]


class TestMultiSupplierFlow:
    def test_requisition_completed_across_suppliers(self, sourcing_flow, purchase_order_service, stock_ledger):
        requisition = sourcing_flow.requisition({"P-100": 100, "P-200": 20})
        quote_a = sourcing_flow.quotation(requisition.id, "S-A", {"P-100": (100, 10, 5), "P-200": (5, 4, 5)})
        quote_c = sourcing_flow.quotation(requisition.id, "S-C", {"P-200": (20, 3, 3)})

        result = sourcing_flow.award(
            requisition.id,
            [sourcing_flow.accept(quote_a, "P-100", 100), sourcing_flow.accept(quote_c, "P-200", 20)],
        )
        assert len(result.purchase_order_ids) == 2

        for po_id in result.purchase_order_ids:
            sourcing_flow.confirm(po_id)
            po = purchase_order_service.get_purchase_order(po_id)
            quantities = {line.product_id: (line.ordered_quantity, 0, 0) for line in po.active_lines}
            assert sourcing_flow.receive(po_id, quantities).purchase_order_status == POStatus.FULLY_RECEIVED

        assert sourcing_flow.requisitions.get_requisition(requisition.id).status == RequisitionStatus.COMPLETED
        assert stock_ledger.level("P-100") == Decimal("100")
        assert stock_ledger.level("P-200") == Decimal("20")
        assert sourcing_flow.quotations.get_quotation(quote_a.id).status == QuotationStatus.PARTIALLY_AWARDED
        assert sourcing_flow.quotations.get_quotation(quote_c.id).status == QuotationStatus.AWARDED

    def test_award_round_trip_restores_pending(self, sourcing_flow, purchase_order_service):
        requisition = sourcing_flow.requisition({"P-100": 100, "P-200": 20})
        quote_a = sourcing_flow.quotation(requisition.id, "S-A", {"P-100": (100, 10, 5)})
        quote_b = sourcing_flow.quotation(requisition.id, "S-B", {"P-200": (20, 3, 3)})
        result = sourcing_flow.award(
            requisition.id,
            [sourcing_flow.accept(quote_a, "P-100", 70), sourcing_flow.accept(quote_b, "P-200", 20)],
        )

        for po_id in result.purchase_order_ids:
            purchase_order_service.transition(po_id, POStatus.CANCELED, sourcing_flow.actor)

        for product_id in ("P-100", "P-200"):
            assert sourcing_flow.line(requisition.id, product_id).pending_po_quantity == 0
        assert sourcing_flow.requisitions.get_requisition(requisition.id).status == RequisitionStatus.QUOTED
