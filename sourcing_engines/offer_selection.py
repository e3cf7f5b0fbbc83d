"""
sourcing_engines.offer_selection -- Offer selection optimizer.

Responsibility:
    Given an offer catalog (required product lines with their candidate
    supplier offers), suggest one offer per line under a cost / delivery-time
    policy, and say how much of it to award.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The catalog is assembled by
    ``sourcing_modules.awards.selectors.OfferCatalogSelector``; the caller
    supplies ``today`` (engines never read the clock).

Algorithm (per line, independently -- offers are never bundled):
    1. net_remaining = max(0, required - purchased - pending).  Zero means
       the requirement is already satisfied or committed: no suggestion.
    2. Candidates need quoted_quantity > 0 and, when an ETA ceiling D is
       given, an estimated delivery date within [today, today + D] calendar
       days.  Offers without an ETA cannot satisfy a ceiling.
    3. No survivor: the line is INFEASIBLE and carries an InfeasibleSelection
       warning; the remaining lines are still processed.
    4. Ranking: offers covering the whole net_remaining first, then lowest
       unit price, then earliest ETA (missing ETA last), then quotation id
       and offer id so ties never depend on input order.
    5. award = min(quoted_quantity, net_remaining); partial coverage is
       flagged on the suggestion and reported as a warning.

Invariants enforced:
    - Determinism: the same catalog and ceiling always give the same result.
    - Advisory only: nothing is mutated; the operator may override any line.

Failure modes:
    - ValidationError for a negative ETA ceiling.

Usage:
    result = select_offers(catalog=catalog, today=clock.today(), eta_ceiling_days=7)
    for warning in result.warnings:
        ...
    accepted = result.accepted_offers()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sourcing_engines.tracer import traced_engine
from sourcing_kernel.domain.values import AdditionalCost
from sourcing_kernel.exceptions import ValidationError

ZERO = Decimal("0")


# ---------------------------------------------------------------------------
# Catalog (input)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CatalogOffer:
    """One supplier offer for one product, annotated with its quotation."""

    offer_id: UUID
    quotation_id: UUID
    supplier_id: str
    product_id: str
    quoted_quantity: Decimal
    unit_price_quoted: Decimal
    estimated_delivery_date: date | None = None
    quotation_status: str = "Received"
    quotation_total: Decimal = ZERO
    additional_costs: tuple[AdditionalCost, ...] = ()
    conditions: str | None = None


@dataclass(frozen=True)
class CatalogLine:
    """A required product line and the offers that could cover it."""

    line_id: UUID
    product_id: str
    required_quantity: Decimal
    purchased_quantity: Decimal = ZERO
    pending_po_quantity: Decimal = ZERO
    product_name: str = ""
    offers: tuple[CatalogOffer, ...] = ()

    @property
    def net_remaining(self) -> Decimal:
        return max(ZERO, self.required_quantity - self.purchased_quantity - self.pending_po_quantity)


@dataclass(frozen=True)
class OfferCatalog:
    """Read view joining a requisition's lines with its open offers."""

    requisition_id: UUID
    lines: tuple[CatalogLine, ...] = ()

    def line_for(self, product_id: str) -> CatalogLine | None:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None


# ---------------------------------------------------------------------------
# Result (output)
# ---------------------------------------------------------------------------


class SelectionStatus(str, Enum):
    SELECTED = "selected"
    SATISFIED = "satisfied"
    INFEASIBLE = "infeasible"


@dataclass(frozen=True)
class InfeasibleSelection:
    """Per-line warning: no candidate satisfies the constraints."""

    line_id: UUID
    product_id: str
    net_remaining: Decimal
    reason: str


@dataclass(frozen=True)
class PartialCoverage:
    """Per-line warning: the best offer covers only part of the need."""

    line_id: UUID
    product_id: str
    net_remaining: Decimal
    award_quantity: Decimal


@dataclass(frozen=True)
class SelectionSuggestion:
    """Outcome for one required line."""

    line_id: UUID
    product_id: str
    status: SelectionStatus
    net_remaining: Decimal
    offer: CatalogOffer | None = None
    award_quantity: Decimal = ZERO
    candidates_considered: int = 0

    @property
    def is_partial(self) -> bool:
        return self.status == SelectionStatus.SELECTED and self.award_quantity < self.net_remaining


@dataclass(frozen=True)
class SuggestedAward:
    """An accepted-offer proposal derived from a suggestion."""

    product_id: str
    quotation_id: UUID
    supplier_id: str
    awarded_quantity: Decimal
    unit_price: Decimal
    estimated_delivery_date: date | None
    offer_id: UUID


@dataclass(frozen=True)
class OfferSelectionResult:
    requisition_id: UUID
    today: date
    eta_ceiling_days: int | None
    suggestions: tuple[SelectionSuggestion, ...] = ()
    warnings: tuple[InfeasibleSelection | PartialCoverage, ...] = field(default_factory=tuple)

    @property
    def infeasible(self) -> tuple[InfeasibleSelection, ...]:
        return tuple(w for w in self.warnings if isinstance(w, InfeasibleSelection))

    @property
    def fully_covered(self) -> bool:
        """True when every line is satisfied or fully covered by its suggestion."""
        return all(
            s.status == SelectionStatus.SATISFIED
            or (s.status == SelectionStatus.SELECTED and not s.is_partial)
            for s in self.suggestions
        )

    def suggestion_for(self, product_id: str) -> SelectionSuggestion | None:
        for suggestion in self.suggestions:
            if suggestion.product_id == product_id:
                return suggestion
        return None

    def accepted_offers(self) -> tuple[SuggestedAward, ...]:
        """Selected suggestions in the shape the award commit accepts."""
        return tuple(
            SuggestedAward(
                product_id=s.product_id,
                quotation_id=s.offer.quotation_id,
                supplier_id=s.offer.supplier_id,
                awarded_quantity=s.award_quantity,
                unit_price=s.offer.unit_price_quoted,
                estimated_delivery_date=s.offer.estimated_delivery_date,
                offer_id=s.offer.offer_id,
            )
            for s in self.suggestions
            if s.status == SelectionStatus.SELECTED and s.offer is not None
        )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _within_ceiling(offer: CatalogOffer, today: date, eta_ceiling_days: int | None) -> bool:
    if eta_ceiling_days is None:
        return True
    if offer.estimated_delivery_date is None:
        return False
    days = (offer.estimated_delivery_date - today).days
    return 0 <= days <= eta_ceiling_days


def _rank_key(offer: CatalogOffer, net_remaining: Decimal) -> tuple:
    eta = offer.estimated_delivery_date
    return (
        0 if offer.quoted_quantity >= net_remaining else 1,
        offer.unit_price_quoted,
        eta is None,
        eta or date.max,
        str(offer.quotation_id),
        str(offer.offer_id),
    )


def select_for_line(
    line: CatalogLine,
    today: date,
    eta_ceiling_days: int | None = None,
) -> tuple[SelectionSuggestion, InfeasibleSelection | PartialCoverage | None]:
    """Suggest an offer for a single line.  Returns (suggestion, warning)."""
    net_remaining = line.net_remaining
    if net_remaining <= ZERO:
        return (
            SelectionSuggestion(
                line_id=line.line_id,
                product_id=line.product_id,
                status=SelectionStatus.SATISFIED,
                net_remaining=ZERO,
            ),
            None,
        )

    candidates = [
        o
        for o in line.offers
        if o.quoted_quantity > ZERO and _within_ceiling(o, today, eta_ceiling_days)
    ]
    if not candidates:
        reason = (
            f"no offer with quantity and ETA within {eta_ceiling_days} day(s)"
            if eta_ceiling_days is not None
            else "no offer with a positive quoted quantity"
        )
        return (
            SelectionSuggestion(
                line_id=line.line_id,
                product_id=line.product_id,
                status=SelectionStatus.INFEASIBLE,
                net_remaining=net_remaining,
            ),
            InfeasibleSelection(
                line_id=line.line_id,
                product_id=line.product_id,
                net_remaining=net_remaining,
                reason=reason,
            ),
        )

    best = min(candidates, key=lambda o: _rank_key(o, net_remaining))
    award = min(best.quoted_quantity, net_remaining)
    suggestion = SelectionSuggestion(
        line_id=line.line_id,
        product_id=line.product_id,
        status=SelectionStatus.SELECTED,
        net_remaining=net_remaining,
        offer=best,
        award_quantity=award,
        candidates_considered=len(candidates),
    )
    warning = None
    if award < net_remaining:
        warning = PartialCoverage(
            line_id=line.line_id,
            product_id=line.product_id,
            net_remaining=net_remaining,
            award_quantity=award,
        )
    return suggestion, warning


@traced_engine(
    "offer_selection",
    "1.0",
    fingerprint_fields=("catalog", "today", "eta_ceiling_days"),
)
def select_offers(
    *,
    catalog: OfferCatalog,
    today: date,
    eta_ceiling_days: int | None = None,
) -> OfferSelectionResult:
    """Suggest one offer per required line of ``catalog``."""
    if eta_ceiling_days is not None and eta_ceiling_days < 0:
        raise ValidationError(f"eta_ceiling_days must be >= 0, got {eta_ceiling_days}")

    suggestions: list[SelectionSuggestion] = []
    warnings: list[InfeasibleSelection | PartialCoverage] = []
    for line in catalog.lines:
        suggestion, warning = select_for_line(line, today, eta_ceiling_days)
        suggestions.append(suggestion)
        if warning is not None:
            warnings.append(warning)

    return OfferSelectionResult(
        requisition_id=catalog.requisition_id,
        today=today,
        eta_ceiling_days=eta_ceiling_days,
        suggestions=tuple(suggestions),
        warnings=tuple(warnings),
    )
