"""
Tests for the awards module service.

Validates:
- commit_awards creates one purchase order per supplier and reconciles the
  requisition and its quotations in one step
- Re-submitting the same accepted offers is idempotent; once every order of
  a batch is canceled the same offers can be awarded again
- Pre-validation failures write nothing
- Over-ordering requires acknowledgement
- A purchase order failure mid-batch is reported as a partial failure and
  the batch can be re-submitted without duplicates
- suggest runs the offer selection engine over the stored quotations
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from sourcing_config.schema import SourcingConfig
from sourcing_kernel.domain.collaborators import ReferenceKind
from sourcing_kernel.domain.values import AdditionalCost, AdditionalCostType
from sourcing_kernel.exceptions import InactiveReferenceError
from sourcing_modules.awards.models import AwardCommitStatus
from sourcing_modules.awards.service import AwardService
from sourcing_modules.purchase_orders.models import POStatus
from sourcing_modules.purchase_orders.service import PurchaseOrderService
from sourcing_modules.quotations.models import QuotationStatus
from sourcing_modules.requisitions.models import RequisitionStatus


class _FailingPurchaseOrders(PurchaseOrderService):
    """Refuses to create orders for one supplier."""

    failing_supplier = "S-B"

    def create_purchase_order(self, *args, **kwargs):
        if kwargs.get("supplier_id") == self.failing_supplier:
            raise InactiveReferenceError("supplier", self.failing_supplier, exists=True)
        return super().create_purchase_order(*args, **kwargs)


@pytest.fixture
def two_supplier_batch(sourcing_flow):
    """Requisition P-100 x 100, P-200 x 10 with one accepted offer from each of S-A and S-B."""
    requisition = sourcing_flow.requisition({"P-100": 100, "P-200": 10})
    quote_a = sourcing_flow.quotation(requisition.id, "S-A", {"P-100": (100, 10, 5)})
    quote_b = sourcing_flow.quotation(requisition.id, "S-B", {"P-200": (10, 2, 3)})
    accepted = [
        sourcing_flow.accept(quote_a, "P-100", 100),
        sourcing_flow.accept(quote_b, "P-200", 10),
    ]
    return requisition, quote_a, quote_b, accepted


# =============================================================================
# Commit
# =============================================================================


class TestCommitAwards:
    def test_one_order_per_supplier(self, two_supplier_batch, sourcing_flow, purchase_order_service):
        requisition, quote_a, quote_b, accepted = two_supplier_batch
        result = sourcing_flow.award(requisition.id, accepted)

        assert result.status == AwardCommitStatus.COMMITTED
        assert result.is_success
        assert result.award_batch_id.startswith("award-")
        assert len(result.purchase_order_ids) == 2

        orders = {po.supplier_id: po for po in purchase_order_service.list_for_requisition(requisition.id)}
        assert set(orders) == {"S-A", "S-B"}
        order_a = orders["S-A"]
        assert order_a.status == POStatus.PENDING
        assert order_a.quotation_id == quote_a.id
        assert order_a.award_batch_id == result.award_batch_id
        assert order_a.products_subtotal == Decimal("1000")
        (line,) = order_a.lines
        assert line.product_id == "P-100"
        assert line.ordered_quantity == Decimal("100")
        assert line.unit_price == Decimal("10")
        assert line.product_name == "Product P-100"
        assert line.source_offer_id == quote_a.offer_for("P-100").id

    def test_requisition_and_quotations_reconciled(self, two_supplier_batch, sourcing_flow, quotation_service):
        requisition, quote_a, quote_b, accepted = two_supplier_batch
        result = sourcing_flow.award(requisition.id, accepted)

        assert sourcing_flow.line(requisition.id, "P-100").pending_po_quantity == Decimal("100")
        assert sourcing_flow.line(requisition.id, "P-200").pending_po_quantity == Decimal("10")
        assert result.requisition_outcome.status_after == RequisitionStatus.PO_IN_PROGRESS
        assert quotation_service.get_quotation(quote_a.id).status == QuotationStatus.AWARDED
        assert quotation_service.get_quotation(quote_a.id).offer_for("P-100").awarded_quantity == Decimal("100")
        assert quotation_service.get_quotation(quote_b.id).status == QuotationStatus.AWARDED
        assert {c.after for c in result.quotation_changes} == {QuotationStatus.AWARDED}

    def test_partial_award_and_lost_quotation(self, sourcing_flow, quotation_service):
        requisition = sourcing_flow.requisition({"P-100": 100, "P-200": 10})
        winner = sourcing_flow.quotation(requisition.id, "S-A", {"P-100": (100, 10, 5), "P-200": (10, 3, 5)})
        loser = sourcing_flow.quotation(requisition.id, "S-B", {"P-100": (100, 11, 5)})
        unanswered = quotation_service.request_quotation(requisition.id, "S-C", sourcing_flow.actor)

        result = sourcing_flow.award(requisition.id, [sourcing_flow.accept(winner, "P-100", 100)])

        assert result.status == AwardCommitStatus.COMMITTED
        assert quotation_service.get_quotation(winner.id).status == QuotationStatus.PARTIALLY_AWARDED
        assert quotation_service.get_quotation(loser.id).status == QuotationStatus.LOST
        assert quotation_service.get_quotation(unanswered.id).status == QuotationStatus.SENT

    def test_partially_awarded_quotation_can_be_awarded_again(self, sourcing_flow, quotation_service):
        requisition = sourcing_flow.requisition({"P-100": 100, "P-200": 10})
        quotation = sourcing_flow.quotation(requisition.id, "S-A", {"P-100": (100, 10, 5), "P-200": (10, 3, 5)})
        sourcing_flow.award(requisition.id, [sourcing_flow.accept(quotation, "P-100", 100)])

        second = sourcing_flow.award(requisition.id, [sourcing_flow.accept(quotation, "P-200", 10)])

        assert second.status == AwardCommitStatus.COMMITTED
        assert quotation_service.get_quotation(quotation.id).status == QuotationStatus.AWARDED

    def test_expected_delivery_is_latest_offer_eta(self, sourcing_flow, purchase_order_service):
        requisition = sourcing_flow.requisition({"P-100": 100, "P-200": 10})
        quotation = sourcing_flow.quotation(requisition.id, "S-A", {"P-100": (100, 10, 5), "P-200": (10, 3, 9)})
        result = sourcing_flow.award(
            requisition.id,
            [sourcing_flow.accept(quotation, "P-100", 100), sourcing_flow.accept(quotation, "P-200", 10)],
        )
        po = purchase_order_service.get_purchase_order(result.purchase_order_ids[0])
        assert po.expected_delivery_date == date(2024, 1, 10)

    def test_expected_delivery_defaults_to_lead_time(self, sourcing_flow, purchase_order_service):
        requisition = sourcing_flow.requisition({"P-100": 100})
        quotation = sourcing_flow.quotation(requisition.id, "S-A", {"P-100": (100, 10, None)})
        result = sourcing_flow.award(requisition.id, [sourcing_flow.accept(quotation, "P-100", 100)])
        po = purchase_order_service.get_purchase_order(result.purchase_order_ids[0])
        assert po.expected_delivery_date == date(2024, 1, 15)

    def test_quotation_costs_copied_to_order(self, sourcing_flow, purchase_order_service):
        requisition = sourcing_flow.requisition({"P-100": 100})
        freight = AdditionalCost("freight", Decimal("25"), AdditionalCostType.LOGISTICS)
        quotation = sourcing_flow.quotation(
            requisition.id, "S-A", {"P-100": (100, 10, 5)}, additional_costs=(freight,),
        )
        result = sourcing_flow.award(requisition.id, [sourcing_flow.accept(quotation, "P-100", 60)])

        po = purchase_order_service.get_purchase_order(result.purchase_order_ids[0])
        assert po.additional_costs == (freight,)
        assert po.products_subtotal == Decimal("600")
        assert po.total_amount == Decimal("625")

    def test_operator_may_override_price(self, sourcing_flow, purchase_order_service):
        requisition = sourcing_flow.requisition({"P-100": 100})
        quotation = sourcing_flow.quotation(requisition.id, "S-A", {"P-100": (100, 10, 5)})
        result = sourcing_flow.award(
            requisition.id, [sourcing_flow.accept(quotation, "P-100", 100, unit_price="9.50")]
        )
        po = purchase_order_service.get_purchase_order(result.purchase_order_ids[0])
        assert po.lines[0].unit_price == Decimal("9.50")


# =============================================================================
# Idempotency
# =============================================================================


class TestAwardIdempotency:
    def test_same_offers_already_committed(self, two_supplier_batch, sourcing_flow, purchase_order_service):
        requisition, _, _, accepted = two_supplier_batch
        first = sourcing_flow.award(requisition.id, accepted)
        second = sourcing_flow.award(requisition.id, list(reversed(accepted)))

        assert second.status == AwardCommitStatus.ALREADY_COMMITTED
        assert second.is_success
        assert second.award_batch_id == first.award_batch_id
        assert set(second.purchase_order_ids) == set(first.purchase_order_ids)
        assert len(purchase_order_service.list_for_requisition(requisition.id)) == 2
        assert sourcing_flow.line(requisition.id, "P-100").pending_po_quantity == Decimal("100")

    def test_explicit_batch_id(self, two_supplier_batch, sourcing_flow, purchase_order_service):
        requisition, _, _, accepted = two_supplier_batch
        result = sourcing_flow.award(requisition.id, accepted, award_batch_id="operator-batch-7")

        assert result.award_batch_id == "operator-batch-7"
        orders = purchase_order_service.list_for_requisition(requisition.id)
        assert {po.award_batch_id for po in orders} == {"operator-batch-7"}
        again = sourcing_flow.award(requisition.id, accepted, award_batch_id="operator-batch-7")
        assert again.status == AwardCommitStatus.ALREADY_COMMITTED

    def test_reaward_after_cancel_creates_new_order(self, sourcing_flow, purchase_order_service):
        requisition, quotation, po_id = sourcing_flow.single_order(required=100, awarded=60)
        first_batch = purchase_order_service.get_purchase_order(po_id).award_batch_id
        purchase_order_service.transition(po_id, POStatus.CANCELED, sourcing_flow.actor)
        assert sourcing_flow.line(requisition.id).pending_po_quantity == 0

        again = sourcing_flow.award(requisition.id, [sourcing_flow.accept(quotation, "P-100", 60)])

        assert again.status == AwardCommitStatus.COMMITTED
        assert again.award_batch_id == f"{first_batch}.1"
        (new_po_id,) = again.purchase_order_ids
        assert new_po_id != po_id
        assert purchase_order_service.get_purchase_order(new_po_id).status == POStatus.PENDING
        assert sourcing_flow.line(requisition.id).pending_po_quantity == Decimal("60")
        assert sourcing_flow.requisitions.get_requisition(requisition.id).status == RequisitionStatus.PO_IN_PROGRESS

        repeated = sourcing_flow.award(requisition.id, [sourcing_flow.accept(quotation, "P-100", 60)])
        assert repeated.status == AwardCommitStatus.ALREADY_COMMITTED
        assert repeated.purchase_order_ids == (new_po_id,)
        assert sourcing_flow.line(requisition.id).pending_po_quantity == Decimal("60")

    def test_canceled_explicit_batch_reopens(self, two_supplier_batch, sourcing_flow, purchase_order_service):
        requisition, _, _, accepted = two_supplier_batch
        first = sourcing_flow.award(requisition.id, accepted, award_batch_id="operator-batch-8")
        for po_id in first.purchase_order_ids:
            purchase_order_service.transition(po_id, POStatus.CANCELED, sourcing_flow.actor)

        again = sourcing_flow.award(requisition.id, accepted, award_batch_id="operator-batch-8")

        assert again.status == AwardCommitStatus.COMMITTED
        assert again.award_batch_id == "operator-batch-8.1"
        assert not set(again.purchase_order_ids) & set(first.purchase_order_ids)
        assert sourcing_flow.line(requisition.id, "P-200").pending_po_quantity == Decimal("10")


# =============================================================================
# Validation
# =============================================================================


class TestAwardValidation:
    def _assert_nothing_written(self, sourcing_flow, purchase_order_service, requisition_id):
        assert purchase_order_service.list_for_requisition(requisition_id) == []
        assert sourcing_flow.requisitions.ledger_history(requisition_id) == []

    def test_empty_batch(self, sourcing_flow, purchase_order_service):
        requisition = sourcing_flow.requisition({"P-100": 100})
        result = sourcing_flow.award(requisition.id, [])
        assert result.status == AwardCommitStatus.VALIDATION_FAILED
        assert not result.is_success
        assert result.error_code == "VALIDATION_ERROR"
        self._assert_nothing_written(sourcing_flow, purchase_order_service, requisition.id)

    def test_non_positive_quantity(self, sourcing_flow, purchase_order_service):
        requisition = sourcing_flow.requisition({"P-100": 100})
        quotation = sourcing_flow.quotation(requisition.id, "S-A", {"P-100": (100, 10, 5)})
        result = sourcing_flow.award(requisition.id, [sourcing_flow.accept(quotation, "P-100", 0)])
        assert result.status == AwardCommitStatus.VALIDATION_FAILED
        assert result.error_code == "INVALID_QUANTITY"
        self._assert_nothing_written(sourcing_flow, purchase_order_service, requisition.id)

    def test_negative_price(self, sourcing_flow):
        requisition = sourcing_flow.requisition({"P-100": 100})
        quotation = sourcing_flow.quotation(requisition.id, "S-A", {"P-100": (100, 10, 5)})
        result = sourcing_flow.award(requisition.id, [sourcing_flow.accept(quotation, "P-100", 10, unit_price=-1)])
        assert result.error_code == "INVALID_PRICE"

    def test_quotation_of_another_requisition(self, sourcing_flow, purchase_order_service):
        requisition = sourcing_flow.requisition({"P-100": 100})
        other = sourcing_flow.requisition({"P-100": 100})
        foreign = sourcing_flow.quotation(other.id, "S-A", {"P-100": (100, 10, 5)})
        result = sourcing_flow.award(requisition.id, [sourcing_flow.accept(foreign, "P-100", 10)])
        assert result.status == AwardCommitStatus.VALIDATION_FAILED
        assert result.error_code == "AWARD_INVALID"
        self._assert_nothing_written(sourcing_flow, purchase_order_service, requisition.id)

    def test_supplier_must_match_quotation(self, sourcing_flow):
        requisition = sourcing_flow.requisition({"P-100": 100})
        quotation = sourcing_flow.quotation(requisition.id, "S-A", {"P-100": (100, 10, 5)})
        offer = sourcing_flow.accept(quotation, "P-100", 10)
        result = sourcing_flow.award(requisition.id, [replace(offer, supplier_id="S-B")])
        assert result.error_code == "AWARD_INVALID"
        assert "supplier does not match" in result.message

    def test_unquoted_product(self, sourcing_flow):
        requisition = sourcing_flow.requisition({"P-100": 100})
        quotation = sourcing_flow.quotation(requisition.id, "S-A", {"P-100": (0, 10, 5)})
        result = sourcing_flow.award(requisition.id, [sourcing_flow.accept(quotation, "P-100", 10)])
        assert result.error_code == "INVALID_TRANSITION"
        assert result.status == AwardCommitStatus.VALIDATION_FAILED
        assert "Canceled" in result.message
        assert "did not quote" in result.message

    def test_rejected_quotation_not_comparable(self, sourcing_flow, quotation_service):
        requisition = sourcing_flow.requisition({"P-100": 100})
        quotation = sourcing_flow.quotation(requisition.id, "S-A", {"P-100": (100, 10, 5)})
        quotation_service.reject_quotation(quotation.id, sourcing_flow.actor)
        result = sourcing_flow.award(requisition.id, [sourcing_flow.accept(quotation, "P-100", 10)])
        assert result.error_code == "AWARD_INVALID"
        assert "Rejected" in result.message

    def test_product_accepted_twice_from_same_supplier(self, sourcing_flow):
        requisition = sourcing_flow.requisition({"P-100": 100})
        quotation = sourcing_flow.quotation(requisition.id, "S-A", {"P-100": (100, 10, 5)})
        result = sourcing_flow.award(
            requisition.id,
            [sourcing_flow.accept(quotation, "P-100", 10), sourcing_flow.accept(quotation, "P-100", 20)],
        )
        assert result.error_code == "AWARD_INVALID"

    def test_inactive_supplier(self, sourcing_flow, master_data, purchase_order_service, captured_logs):
        requisition = sourcing_flow.requisition({"P-100": 100})
        quotation = sourcing_flow.quotation(requisition.id, "S-A", {"P-100": (100, 10, 5)})
        master_data.deactivate(ReferenceKind.SUPPLIER, "S-A")

        result = sourcing_flow.award(requisition.id, [sourcing_flow.accept(quotation, "P-100", 10)])

        assert result.status == AwardCommitStatus.VALIDATION_FAILED
        assert result.error_code == "INACTIVE_REFERENCE"
        self._assert_nothing_written(sourcing_flow, purchase_order_service, requisition.id)
        assert any(r["message"] == "award_commit_rejected" for r in captured_logs())

    def test_canceled_requisition(self, sourcing_flow, requisition_service):
        requisition = sourcing_flow.requisition({"P-100": 100})
        quotation = sourcing_flow.quotation(requisition.id, "S-A", {"P-100": (100, 10, 5)})
        requisition_service.cancel_requisition(requisition.id, sourcing_flow.actor)
        result = sourcing_flow.award(requisition.id, [sourcing_flow.accept(quotation, "P-100", 10)])
        assert result.error_code == "AWARD_INVALID"


# =============================================================================
# Over-ordering
# =============================================================================


class TestOverOrder:
    @pytest.fixture
    def over_ordered(self, sourcing_flow):
        requisition = sourcing_flow.requisition({"P-100": 100})
        quotation = sourcing_flow.quotation(requisition.id, "S-A", {"P-100": (150, 10, 5)})
        return requisition, [sourcing_flow.accept(quotation, "P-100", 120)]

    def test_requires_acknowledgement(self, over_ordered, sourcing_flow, purchase_order_service):
        requisition, accepted = over_ordered
        result = sourcing_flow.award(requisition.id, accepted)

        assert result.status == AwardCommitStatus.OVER_ORDER_NOT_ACKNOWLEDGED
        assert result.over_ordered_products == ("P-100",)
        assert purchase_order_service.list_for_requisition(requisition.id) == []
        assert sourcing_flow.line(requisition.id).pending_po_quantity == 0

    def test_acknowledged_over_order_commits(self, over_ordered, sourcing_flow, captured_logs):
        requisition, accepted = over_ordered
        result = sourcing_flow.award(requisition.id, accepted, acknowledge_over_order=True)

        assert result.status == AwardCommitStatus.COMMITTED
        assert result.over_ordered_products == ("P-100",)
        assert sourcing_flow.line(requisition.id).pending_po_quantity == Decimal("120")
        assert any(r["message"] == "award_commit_over_order_acknowledged" for r in captured_logs())

    def test_pending_quantity_counts_towards_need(self, sourcing_flow):
        requisition = sourcing_flow.requisition({"P-100": 100})
        quotation = sourcing_flow.quotation(requisition.id, "S-A", {"P-100": (100, 10, 5)})
        sourcing_flow.award(requisition.id, [sourcing_flow.accept(quotation, "P-100", 60)])

        result = sourcing_flow.award(requisition.id, [sourcing_flow.accept(quotation, "P-100", 50)])

        assert result.status == AwardCommitStatus.OVER_ORDER_NOT_ACKNOWLEDGED
        assert result.over_ordered_products == ("P-100",)

    def test_lost_quotation_cannot_be_awarded(self, sourcing_flow):
        requisition = sourcing_flow.requisition({"P-100": 100})
        quote_a = sourcing_flow.quotation(requisition.id, "S-A", {"P-100": (60, 10, 5)})
        quote_b = sourcing_flow.quotation(requisition.id, "S-B", {"P-100": (100, 11, 5)})
        sourcing_flow.award(requisition.id, [sourcing_flow.accept(quote_a, "P-100", 60)])

        result = sourcing_flow.award(requisition.id, [sourcing_flow.accept(quote_b, "P-100", 40)])

        assert result.status == AwardCommitStatus.VALIDATION_FAILED
        assert "Lost" in result.message

    def test_acknowledgement_can_be_disabled(
        self, over_ordered, session_factory, master_data, deterministic_clock, actor,
    ):
        requisition, accepted = over_ordered
        config = SourcingConfig(require_over_order_acknowledgement=False)
        service = AwardService(session_factory, master_data, deterministic_clock, config)

        result = service.commit_awards(requisition.id, accepted, actor)

        assert result.status == AwardCommitStatus.COMMITTED
        assert result.over_ordered_products == ("P-100",)


# =============================================================================
# Partial failure
# =============================================================================


class TestPartialFailure:
    def test_failure_mid_batch_then_resubmit(
        self,
        two_supplier_batch,
        session_factory,
        master_data,
        deterministic_clock,
        config,
        actor,
        award_service,
        purchase_order_service,
        sourcing_flow,
        captured_logs,
    ):
        requisition, _, _, accepted = two_supplier_batch
        failing = AwardService(
            session_factory,
            master_data,
            deterministic_clock,
            config,
            purchase_orders=_FailingPurchaseOrders(session_factory, master_data, deterministic_clock, config),
        )

        partial = failing.commit_awards(requisition.id, accepted, actor)

        assert partial.status == AwardCommitStatus.PARTIAL_FAILURE
        assert not partial.is_success
        assert partial.failed_supplier_id == "S-B"
        assert partial.error_code == "INACTIVE_REFERENCE"
        assert len(partial.purchase_order_ids) == 1
        assert sourcing_flow.line(requisition.id, "P-100").pending_po_quantity == 0
        failures = [r for r in captured_logs() if r["message"] == "award_commit_partial_failure"]
        assert failures[0]["phase"] == "purchase_orders"

        retried = award_service.commit_awards(requisition.id, accepted, actor)

        assert retried.status == AwardCommitStatus.COMMITTED
        assert retried.award_batch_id == partial.award_batch_id
        assert retried.purchase_order_ids[0] == partial.purchase_order_ids[0]
        assert len(purchase_order_service.list_for_requisition(requisition.id)) == 2
        assert sourcing_flow.line(requisition.id, "P-100").pending_po_quantity == Decimal("100")
        assert sourcing_flow.line(requisition.id, "P-200").pending_po_quantity == Decimal("10")
        assert any(r["message"] == "award_purchase_order_reused" for r in captured_logs())


# =============================================================================
# Suggestion
# =============================================================================


class TestSuggest:
    @pytest.fixture
    def quoted(self, sourcing_flow):
        requisition = sourcing_flow.requisition({"P-100": 100})
        sourcing_flow.quotation(requisition.id, "S-A", {"P-100": (100, 10, 5)})
        sourcing_flow.quotation(requisition.id, "S-B", {"P-100": (100, 9, 10)})
        return requisition

    def test_ceiling_and_price(self, quoted, award_service):
        assert award_service.suggest(quoted.id, eta_ceiling_days=7).suggestion_for("P-100").offer.supplier_id == "S-A"
        assert award_service.suggest(quoted.id).suggestion_for("P-100").offer.supplier_id == "S-B"

    def test_suggestion_can_be_committed(self, quoted, award_service, actor, purchase_order_service):
        suggestion = award_service.suggest(quoted.id, eta_ceiling_days=7)
        result = award_service.commit_awards(quoted.id, suggestion.accepted_offers(), actor)

        assert result.status == AwardCommitStatus.COMMITTED
        (po,) = purchase_order_service.list_for_requisition(quoted.id)
        assert po.supplier_id == "S-A"
        assert po.lines[0].ordered_quantity == Decimal("100")

    def test_committed_need_is_satisfied(self, quoted, award_service, actor):
        award_service.commit_awards(quoted.id, award_service.suggest(quoted.id).accepted_offers(), actor)
        again = award_service.suggest(quoted.id)
        assert again.accepted_offers() == ()
        assert again.fully_covered
