"""
Five-stage fulfillment lifecycle of a stock-order line item.

    ordered -> sending -> confirmed -> picked -> received

Each stage is written once (quantity + timestamp). Stages may be recorded out
of order because branch, warehouse and delivery staff work independently.
Overwriting a recorded stage needs ``correction=True`` and leaves a
``StageCorrection`` row behind. An item is closed once it is received.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from backend.app.db.models.models_v1 import StageCorrection, StockOrderItem
from backend.app.db.models.core_types import STAGE_ORDER, Stage, StageSignal, Variance
from backend.services.business_time import require_aware
from backend.services.errors import InvalidQuantityError, ItemClosedError, StageAlreadySetError

logger = logging.getLogger(__name__)

# "ordered" is stored in the required_* columns
STAGE_FIELDS: dict[Stage, tuple[str, str]] = {
    Stage.ordered: ("required_qty", "required_date"),
    Stage.sending: ("sending_qty", "sending_date"),
    Stage.confirmed: ("confirmed_qty", "confirmed_date"),
    Stage.picked: ("picked_qty", "picked_date"),
    Stage.received: ("received_qty", "received_date"),
}


@dataclass(frozen=True)
class StageValue:
    qty: int | None
    at: datetime | None

    @property
    def is_set(self) -> bool:
        return self.qty is not None and self.at is not None


def stage_value(item: StockOrderItem, stage: Stage) -> StageValue:
    qty_field, date_field = STAGE_FIELDS[stage]
    return StageValue(getattr(item, qty_field), getattr(item, date_field))


def is_closed(item: StockOrderItem) -> bool:
    return item.received_date is not None


def current_stage(item: StockOrderItem) -> Stage:
    """Furthest stage that has been recorded."""
    reached = Stage.ordered
    for stage in STAGE_ORDER:
        if stage_value(item, stage).is_set:
            reached = stage
    return reached


def reconcile(item: StockOrderItem) -> StockOrderItem:
    item.difference_qty = (item.received_qty or 0) - (item.required_qty or 0)
    return item


def variance(item: StockOrderItem) -> Variance:
    diff = (item.received_qty or 0) - (item.required_qty or 0)
    if diff < 0:
        return Variance.shortage
    if diff > 0:
        return Variance.excess
    return Variance.exact


def compare_stages(prev: StageValue, cur: StageValue) -> StageSignal:
    if not cur.is_set:
        return StageSignal.pending
    prev_qty = prev.qty or 0
    if cur.qty > prev_qty:
        return StageSignal.excess
    if cur.qty < prev_qty:
        return StageSignal.shortfall
    return StageSignal.on_target


def stage_signals(item: StockOrderItem) -> dict[Stage, StageSignal]:
    """
    Signal for each transition, keyed by the later stage:
    ordered->sending, sending->confirmed, confirmed->picked, picked->received.

    A stage that has not been recorded yet is skipped over: the next stage
    is compared against the last recorded one.
    """
    signals: dict[Stage, StageSignal] = {}
    baseline = stage_value(item, Stage.ordered)
    for stage in STAGE_ORDER[1:]:
        cur = stage_value(item, stage)
        signals[stage] = compare_stages(baseline, cur)
        if cur.is_set:
            baseline = cur
    return signals


def advance(
    item: StockOrderItem,
    stage: Stage,
    qty: int,
    at: datetime,
    *,
    correction: bool = False,
    actor: str | None = None,
    reason: str | None = None,
) -> StageCorrection | None:
    """
    Record ``qty`` for ``stage`` at ``at``.

    Returns the audit row when an existing value was corrected (the caller
    adds it to the session through ``item.corrections``), else ``None``.
    """
    stage = Stage(stage)
    if qty is None or qty < 0:
        raise InvalidQuantityError(f"{stage.value} quantity must be >= 0")
    require_aware(at, "at")

    previous = stage_value(item, stage)

    if not correction:
        if is_closed(item):
            raise ItemClosedError(
                f"Item {item.line_no} is already received; {stage.value} needs a correction"
            )
        if previous.is_set:
            raise StageAlreadySetError(
                f"{stage.value} already set to {previous.qty} for item {item.line_no}"
            )

    qty_field, date_field = STAGE_FIELDS[stage]
    setattr(item, qty_field, qty)
    setattr(item, date_field, at)
    reconcile(item)

    if not correction:
        return None

    audit = StageCorrection(
        stage=stage,
        old_qty=previous.qty,
        old_at=previous.at,
        new_qty=qty,
        new_at=at,
        corrected_by=actor,
        reason=reason,
    )
    item.corrections.append(audit)
    logger.info(
        "Corrected %s on item %s (line %s): %s -> %s by %s",
        stage.value, item.id, item.line_no, previous.qty, qty, actor or "unknown",
    )
    return audit
