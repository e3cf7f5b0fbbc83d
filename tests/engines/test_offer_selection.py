"""
Tests for the offer selection engine.

Validates:
- ETA ceiling filtering and price ranking (reference scenarios 1 and 2)
- Full-coverage offers outrank cheaper partial ones
- Tie-breaking by ETA, then by quotation id, independent of input order
- Satisfied lines get no suggestion; infeasible lines get a warning while
  other lines are still processed
- Partial coverage is flagged and reported
- Negative ETA ceiling is rejected
- Every invocation emits SOURCING_ENGINE_TRACE
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from sourcing_engines.offer_selection import (
    CatalogLine,
    CatalogOffer,
    InfeasibleSelection,
    OfferCatalog,
    PartialCoverage,
    SelectionStatus,
    select_for_line,
    select_offers,
)
from sourcing_kernel.exceptions import ValidationError

TODAY = date(2024, 1, 1)


def _offer(supplier_id, quantity, price, eta_days=None, product_id="P-100", quotation_id=None):
    return CatalogOffer(
        offer_id=uuid4(),
        quotation_id=quotation_id or uuid4(),
        supplier_id=supplier_id,
        product_id=product_id,
        quoted_quantity=Decimal(str(quantity)),
        unit_price_quoted=Decimal(str(price)),
        estimated_delivery_date=TODAY + timedelta(days=eta_days) if eta_days is not None else None,
    )


def _line(offers, required=100, purchased=0, pending=0, product_id="P-100"):
    return CatalogLine(
        line_id=uuid4(),
        product_id=product_id,
        required_quantity=Decimal(str(required)),
        purchased_quantity=Decimal(str(purchased)),
        pending_po_quantity=Decimal(str(pending)),
        offers=tuple(offers),
    )


def _catalog(*lines):
    return OfferCatalog(requisition_id=uuid4(), lines=tuple(lines))


# =============================================================================
# Reference scenarios
# =============================================================================


class TestReferenceScenarios:
    """Line{required=100}; A{100 @ 10, +5d}, B{100 @ 9, +10d}."""

    @pytest.fixture
    def catalog(self):
        return _catalog(_line([_offer("S-A", 100, 10, 5), _offer("S-B", 100, 9, 10)]))

    def test_ceiling_seven_days_picks_a(self, catalog):
        result = select_offers(catalog=catalog, today=TODAY, eta_ceiling_days=7)
        suggestion = result.suggestion_for("P-100")
        assert suggestion.status == SelectionStatus.SELECTED
        assert suggestion.offer.supplier_id == "S-A"
        assert suggestion.award_quantity == Decimal("100")
        assert suggestion.candidates_considered == 1
        assert result.warnings == ()

    def test_no_ceiling_picks_cheaper_b(self, catalog):
        result = select_offers(catalog=catalog, today=TODAY)
        suggestion = result.suggestion_for("P-100")
        assert suggestion.offer.supplier_id == "S-B"
        assert suggestion.award_quantity == Decimal("100")
        assert result.fully_covered


# =============================================================================
# Ranking
# =============================================================================


class TestRanking:
    def test_full_coverage_outranks_cheaper_partial(self):
        line = _line([_offer("S-A", 40, 5), _offer("S-B", 100, 9)])
        suggestion, warning = select_for_line(line, TODAY)
        assert suggestion.offer.supplier_id == "S-B"
        assert warning is None

    def test_cheapest_partial_when_nobody_covers(self):
        line = _line([_offer("S-A", 40, 5), _offer("S-B", 70, 9)])
        suggestion, warning = select_for_line(line, TODAY)
        assert suggestion.offer.supplier_id == "S-A"
        assert suggestion.award_quantity == Decimal("40")
        assert suggestion.is_partial
        assert isinstance(warning, PartialCoverage)
        assert warning.award_quantity == Decimal("40")
        assert warning.net_remaining == Decimal("100")

    def test_equal_price_earliest_eta_wins(self):
        line = _line([_offer("S-A", 100, 9, 10), _offer("S-B", 100, 9, 3)])
        suggestion, _ = select_for_line(line, TODAY)
        assert suggestion.offer.supplier_id == "S-B"

    def test_missing_eta_ranks_last_on_tie(self):
        line = _line([_offer("S-A", 100, 9, None), _offer("S-B", 100, 9, 30)])
        suggestion, _ = select_for_line(line, TODAY)
        assert suggestion.offer.supplier_id == "S-B"

    def test_full_tie_broken_by_quotation_id(self):
        low = UUID("00000000-0000-0000-0000-000000000001")
        high = UUID("ffffffff-0000-0000-0000-000000000000")
        offers = [
            _offer("S-A", 100, 9, 5, quotation_id=high),
            _offer("S-B", 100, 9, 5, quotation_id=low),
        ]
        forward, _ = select_for_line(_line(offers), TODAY)
        backward, _ = select_for_line(_line(list(reversed(offers))), TODAY)
        assert forward.offer.quotation_id == low
        assert backward.offer.quotation_id == low

    def test_award_capped_at_net_remaining(self):
        line = _line([_offer("S-A", 500, 9)], required=100, purchased=20, pending=30)
        suggestion, _ = select_for_line(line, TODAY)
        assert suggestion.net_remaining == Decimal("50")
        assert suggestion.award_quantity == Decimal("50")


# =============================================================================
# Filtering and warnings
# =============================================================================


class TestFilteringAndWarnings:
    def test_zero_quantity_offers_ignored(self):
        line = _line([_offer("S-A", 0, 1), _offer("S-B", 100, 9)])
        suggestion, _ = select_for_line(line, TODAY)
        assert suggestion.offer.supplier_id == "S-B"
        assert suggestion.candidates_considered == 1

    def test_ceiling_excludes_missing_and_past_eta(self):
        line = _line([_offer("S-A", 100, 1, None), _offer("S-B", 100, 2, -1), _offer("S-C", 100, 3, 7)])
        suggestion, _ = select_for_line(line, TODAY, eta_ceiling_days=7)
        assert suggestion.offer.supplier_id == "S-C"

    def test_ceiling_zero_allows_today(self):
        line = _line([_offer("S-A", 100, 1, 0)])
        suggestion, _ = select_for_line(line, TODAY, eta_ceiling_days=0)
        assert suggestion.status == SelectionStatus.SELECTED

    def test_satisfied_line_has_no_suggestion(self):
        line = _line([_offer("S-A", 100, 1)], required=100, purchased=60, pending=40)
        suggestion, warning = select_for_line(line, TODAY)
        assert suggestion.status == SelectionStatus.SATISFIED
        assert suggestion.offer is None
        assert warning is None

    def test_infeasible_line_does_not_block_others(self):
        feasible = _line([_offer("S-A", 10, 2, 5, product_id="P-200")], required=10, product_id="P-200")
        infeasible = _line([_offer("S-B", 100, 9, 30)], product_id="P-100")
        result = select_offers(catalog=_catalog(infeasible, feasible), today=TODAY, eta_ceiling_days=7)

        assert result.suggestion_for("P-100").status == SelectionStatus.INFEASIBLE
        assert result.suggestion_for("P-200").status == SelectionStatus.SELECTED
        assert len(result.infeasible) == 1
        warning = result.infeasible[0]
        assert isinstance(warning, InfeasibleSelection)
        assert warning.product_id == "P-100"
        assert "7 day" in warning.reason
        assert not result.fully_covered
        assert [a.product_id for a in result.accepted_offers()] == ["P-200"]

    def test_line_without_offers_is_infeasible(self):
        suggestion, warning = select_for_line(_line([]), TODAY)
        assert suggestion.status == SelectionStatus.INFEASIBLE
        assert warning.reason == "no offer with a positive quoted quantity"

    def test_negative_ceiling_rejected(self):
        with pytest.raises(ValidationError):
            select_offers(catalog=_catalog(_line([])), today=TODAY, eta_ceiling_days=-1)


# =============================================================================
# Result shape and tracing
# =============================================================================


class TestResult:
    def test_accepted_offers_carry_offer_details(self):
        offer = _offer("S-A", 100, 10, 5)
        result = select_offers(catalog=_catalog(_line([offer])), today=TODAY)
        (accepted,) = result.accepted_offers()
        assert accepted.offer_id == offer.offer_id
        assert accepted.quotation_id == offer.quotation_id
        assert accepted.supplier_id == "S-A"
        assert accepted.unit_price == Decimal("10")
        assert accepted.awarded_quantity == Decimal("100")
        assert accepted.estimated_delivery_date == date(2024, 1, 6)

    def test_deterministic(self):
        catalog = _catalog(
            _line([_offer("S-A", 50, 10, 5), _offer("S-B", 100, 9, 10), _offer("S-C", 100, 9, 10)]),
            _line([_offer("S-A", 5, 1, product_id="P-200")], required=10, product_id="P-200"),
        )
        first = select_offers(catalog=catalog, today=TODAY, eta_ceiling_days=30)
        second = select_offers(catalog=catalog, today=TODAY, eta_ceiling_days=30)
        assert first == second

    def test_engine_trace_emitted(self, captured_logs):
        catalog = _catalog(_line([_offer("S-A", 100, 10, 5)]))
        select_offers(catalog=catalog, today=TODAY, eta_ceiling_days=7)
        select_offers(catalog=catalog, today=TODAY, eta_ceiling_days=7)

        traces = [r for r in captured_logs() if r["message"] == "SOURCING_ENGINE_TRACE"]
        assert len(traces) == 2
        assert traces[0]["engine_name"] == "offer_selection"
        assert len(traces[0]["input_fingerprint"]) == 16
        assert traces[0]["input_fingerprint"] == traces[1]["input_fingerprint"]
