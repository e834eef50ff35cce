import random
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import delete

from backend.app.db.models.core_types import DateBasis, OrderType, ReportKind, Stage, StageSignal
from backend.app.db.models.models_v1 import Product
from backend.app.schemas.stock_order import (
    AdvanceStage,
    BillCreate,
    InstockEntryCreate,
    InstockStatusUpdate,
    ReturnOrderCreate,
    StockOrderCreate,
)
from backend.services.aggregation import AggregationEngine, ReportScope, Tally, branch_headers
from backend.services.business_time import LocalDay
from backend.services.orders import (
    advance_item_stage,
    create_bill,
    create_instock_entry,
    create_return_order,
    create_stock_order,
    update_instock_status,
)
from backend.services.report_scope import to_dto

NOW = datetime(2026, 1, 20, 4, 0, tzinfo=timezone.utc)  # 09:30 local
DAY = LocalDay(date(2026, 1, 20))
STAGES = [s.value for s in Stage]


def _place(db, catalog, branch, lines, *, now=NOW, delivery=None):
    payload = StockOrderCreate(
        branch_id=catalog[branch],
        delivery_date=delivery or now,
        items=[{"product_id": catalog[p], "required_qty": q} for p, q in lines],
    )
    return create_stock_order(db, payload, now=now)


def _advance(db, order, line_no, stage, qty, at):
    advance_item_stage(db, order.id, line_no, AdvanceStage(stage=stage, qty=qty, at=at))


def _report(db, kind=ReportKind.stock_orders, **kw):
    kw.setdefault("start_day", DAY)
    kw.setdefault("end_day", DAY)
    return AggregationEngine(db).report(kind, ReportScope(**kw))


def test_same_product_merges_across_orders(db_session, catalog):
    first = _place(db_session, catalog, "saw", [("bun", 5)])
    second = _place(db_session, catalog, "saw", [("bun", 3)])
    _advance(db_session, first, 1, "received", 4, NOW + timedelta(hours=3))
    _advance(db_session, second, 1, "received", 3, NOW + timedelta(hours=5))

    result = _report(db_session)

    assert len(result.rows) == 1
    row = result.rows[0]
    assert row.product.name == "Bun"
    assert row.tally.q("ordered") == 8
    assert row.tally.q("received") == 7
    assert row.tally.difference_qty == -1
    assert row.tally.a("ordered") == Decimal("80.00")
    assert row.tally.difference_amount == Decimal("-10.00")
    assert row.tally.latest["received"] == NOW + timedelta(hours=5)
    assert row.invoice_numbers == ["SAW-STC-260120-01", "SAW-STC-260120-02"]
    assert result.document_count == 2


def test_branch_headers_skip_zero_and_sort_by_amount(db_session, catalog):
    _place(db_session, catalog, "saw", [("bun", 5)])
    _place(db_session, catalog, "tut", [("milk_bread", 3), ("bun", 3)])

    result = _report(db_session)
    # TUT: 3*40 + 3*10 = 150, SAW: 5*10 = 50, CHI ordered nothing
    assert result.branch_headers == ["TUT", "SAW"]

    dto = to_dto(result)
    bun = next(r for r in dto.rows if r.name == "Bun")
    assert list(bun.branches) == ["TUT", "SAW"]
    assert bun.branch_display == "TUT - 3,SAW - 5"
    bread = next(r for r in dto.rows if r.name == "Milk Bread")
    assert list(bread.branches) == ["TUT"]


def test_branch_header_tie_breaks():
    def cell(qty, amount):
        t = Tally()
        t.add("ordered", qty, Decimal(amount))
        return t

    totals = {"TUT": cell(1, "40"), "SAW": cell(4, "40"), "CHI": cell(0, "0"), "ABC": cell(4, "40")}
    assert branch_headers(totals, "ordered") == ["ABC", "SAW", "TUT"]


def test_day_window_is_inclusive_of_last_second(db_session, catalog):
    # 23:59:59 local on the 20th
    inside = _place(
        db_session, catalog, "saw", [("bun", 1)], delivery=datetime(2026, 1, 20, 18, 29, 59, tzinfo=timezone.utc)
    )
    # 00:00:00 local on the 21st
    outside = _place(
        db_session, catalog, "saw", [("bun", 2)], delivery=datetime(2026, 1, 20, 18, 30, tzinfo=timezone.utc)
    )

    today = _report(db_session)
    assert [i.invoice for i in today.invoices] == [inside.invoice_number]
    assert today.totals.q("ordered") == 1

    tomorrow = _report(db_session, start_day=DAY.next(), end_day=DAY.next())
    assert [i.invoice for i in tomorrow.invoices] == [outside.invoice_number]
    assert tomorrow.totals.q("ordered") == 2


def test_item_with_pruned_product_is_skipped(db_session, catalog):
    _place(db_session, catalog, "saw", [("bun", 2), ("samosa", 4)])
    db_session.execute(delete(Product).where(Product.id == catalog["samosa"]))
    db_session.commit()

    result = _report(db_session)

    assert result.skipped_items == 1
    assert [r.product.name for r in result.rows] == ["Bun"]
    assert result.totals.q("ordered") == 2
    assert to_dto(result).skipped_items == 1


def test_live_and_stock_orders(db_session, catalog):
    live = _place(db_session, catalog, "saw", [("bun", 1)])
    stock = _place(db_session, catalog, "saw", [("bun", 2)], delivery=NOW + timedelta(days=1))

    result = _report(db_session, date_basis=DateBasis.created)

    stats = {s.branch_name: s for s in result.branch_matrix}
    assert set(stats) == {"Chidambaram", "Sawyerpuram", "Tuticorin"}
    assert (stats["Sawyerpuram"].stock_orders, stats["Sawyerpuram"].live_orders) == (1, 1)
    assert stats["Tuticorin"].total_orders == 0
    assert result.matrix_totals.total_orders == 2
    assert {i.invoice: i.is_live for i in result.invoices} == {live.invoice_number: True, stock.invoice_number: False}

    only_live = _report(db_session, date_basis=DateBasis.created, order_type=OrderType.live)
    assert only_live.totals.q("ordered") == 1
    only_stock = _report(db_session, date_basis=DateBasis.created, order_type=OrderType.stock)
    assert only_stock.totals.q("ordered") == 2


def test_delivery_basis_is_the_default(db_session, catalog):
    _place(db_session, catalog, "saw", [("bun", 2)], delivery=NOW + timedelta(days=1))
    assert _report(db_session).document_count == 0
    assert _report(db_session, start_day=DAY.next(), end_day=DAY.next()).document_count == 1


def test_invoice_drill_down_keeps_lines_apart(db_session, catalog):
    first = _place(db_session, catalog, "saw", [("bun", 2), ("bun", 3)])
    _place(db_session, catalog, "saw", [("bun", 7)])

    result = _report(db_session, invoice_number=first.invoice_number)

    assert [r.tally.q("ordered") for r in result.rows] == [2, 3]
    assert {r.invoice_number for r in result.rows} == {first.invoice_number}
    assert result.document_count == 1
    # the invoice picker still lists every invoice in range
    assert len(result.invoices) == 2


def test_branch_restriction(db_session, catalog):
    _place(db_session, catalog, "saw", [("bun", 2)])
    _place(db_session, catalog, "chi", [("bun", 9)])

    result = _report(db_session, branch_ids=frozenset({catalog["saw"]}))

    assert result.branch_headers == ["SAW"]
    assert result.totals.q("ordered") == 2
    assert [s.branch_name for s in result.branch_matrix] == ["Sawyerpuram"]


def test_status_filter_uses_current_stage(db_session, catalog):
    order = _place(db_session, catalog, "saw", [("bun", 2), ("milk_bread", 1)])
    _advance(db_session, order, 2, "received", 1, NOW + timedelta(hours=4))

    result = _report(db_session, status="received")
    assert [r.product.name for r in result.rows] == ["Milk Bread"]


def test_merged_row_signals(db_session, catalog):
    order = _place(db_session, catalog, "saw", [("bun", 10)])
    _advance(db_session, order, 1, "sending", 10, NOW + timedelta(hours=1))
    _advance(db_session, order, 1, "picked", 8, NOW + timedelta(hours=2))

    row = _report(db_session).rows[0]
    signals = row.signals()
    assert signals[Stage.sending] == StageSignal.on_target
    assert signals[Stage.confirmed] == StageSignal.pending
    assert signals[Stage.picked] == StageSignal.shortfall
    assert signals[Stage.received] == StageSignal.pending


def _sell(db, catalog, branch, lines, *, method="cash", status="completed", now=NOW):
    payload = BillCreate(
        branch_id=catalog[branch],
        payment_method=method,
        status=status,
        items=[{"product_id": catalog[p], "quantity": q} for p, q in lines],
    )
    return create_bill(db, payload, now=now)


def test_category_and_department_reports_read_bills(db_session, catalog):
    _sell(db_session, catalog, "saw", [("bun", 2), ("milk_bread", 1), ("samosa", 4)])
    _sell(db_session, catalog, "tut", [("samosa", 6)])
    # stock orders do not feed the sales reports
    _place(db_session, catalog, "chi", [("samosa", 50)])

    categories = to_dto(_report(db_session, ReportKind.category_wise))
    assert [(r.name, r.department_name) for r in categories.rows] == [("Breads", "Bakery"), ("Savory", "Snacks")]
    assert [r.measures["sold"].qty for r in categories.rows] == [3, 10]
    # SAW: 20 + 40 + 60 = 120, TUT: 90
    assert categories.branch_headers == ["SAW", "TUT"]
    assert categories.rows[1].branch_display == "SAW - 4,TUT - 6"
    assert categories.measures == ["sold"]
    assert categories.rows[0].difference_qty is None
    assert categories.document_count == 2

    departments = to_dto(_report(db_session, ReportKind.department_wise))
    assert [r.name for r in departments.rows] == ["Bakery", "Snacks"]
    assert [r.measures["sold"].amount for r in departments.rows] == [60.0, 150.0]


def test_product_wise_sales_use_line_subtotals(db_session, catalog):
    payload = BillCreate(
        branch_id=catalog["saw"],
        items=[{"product_id": catalog["bun"], "quantity": 4, "unit_price": "8.00"}],
    )
    create_bill(db_session, payload, now=NOW)
    _sell(db_session, catalog, "tut", [("bun", 1)])

    result = _report(db_session, ReportKind.product_wise)
    row = result.rows[0]
    assert row.product.name == "Bun"
    assert row.tally.q("sold") == 5
    assert row.tally.a("sold") == Decimal("42.00")
    assert result.branch_headers == ["SAW", "TUT"]


def test_stage_measure_reads_stock_orders(db_session, catalog):
    order = _place(db_session, catalog, "saw", [("bun", 5)])
    _advance(db_session, order, 1, "received", 4, NOW + timedelta(hours=2))
    _sell(db_session, catalog, "saw", [("bun", 9)])

    result = _report(db_session, ReportKind.product_wise, measure=Stage.received)
    assert result.measures == ("received",)
    assert result.totals.q("received") == 4
    assert result.totals.a("received") == Decimal("40.00")

    categories = to_dto(_report(db_session, ReportKind.category_wise, measure=Stage.ordered))
    assert [r.measures["ordered"].qty for r in categories.rows] == [5]


def test_department_filter(db_session, catalog):
    _sell(db_session, catalog, "saw", [("bun", 2), ("samosa", 4)])
    result = _report(db_session, ReportKind.product_wise, department_id=2)
    assert [r.product.name for r in result.rows] == ["Samosa"]


def test_bill_status_filter(db_session, catalog):
    _sell(db_session, catalog, "saw", [("bun", 2)])
    _sell(db_session, catalog, "saw", [("bun", 5)], status="cancelled")

    assert _report(db_session, ReportKind.product_wise).totals.q("sold") == 7
    assert _report(db_session, ReportKind.product_wise, status="completed").totals.q("sold") == 2
    with pytest.raises(ValueError):
        _report(db_session, ReportKind.product_wise, status="approved")


def test_branch_wise_takings_by_payment_method(db_session, catalog):
    _sell(db_session, catalog, "saw", [("bun", 2)], method="cash")  # 20
    _sell(db_session, catalog, "saw", [("milk_bread", 1)], method="upi")  # 40
    _sell(db_session, catalog, "tut", [("samosa", 10)], method="card")  # 150
    _sell(db_session, catalog, "tut", [("bun", 1)], method=None)  # 10

    result = _report(db_session, ReportKind.branch_wise)

    assert [b.branch_name for b in result.billing] == ["Tuticorin", "Sawyerpuram"]
    tut, saw = result.billing
    assert (tut.total_bills, tut.total_amount) == (2, Decimal("160.00"))
    assert tut.by_method == {"cash": 0, "card": Decimal("150.00"), "upi": 0, "other": Decimal("10.00")}
    assert saw.by_method["cash"] == Decimal("20.00")
    assert saw.by_method["upi"] == Decimal("40.00")

    totals = result.billing_totals
    assert (totals.total_bills, totals.total_amount) == (4, Decimal("220.00"))
    assert sum(totals.by_method.values()) == totals.total_amount
    # product rows come along with the takings
    assert result.totals.a("sold") == Decimal("220.00")

    dto = to_dto(result)
    assert [(b.s_no, b.branch_name, b.total_amount) for b in dto.billing] == [
        (1, "Tuticorin", 160.0),
        (2, "Sawyerpuram", 60.0),
    ]
    assert dto.billing_totals.cash == 20.0
    assert dto.billing_totals.branch_name == "Total"


def test_branch_wise_respects_branch_scope(db_session, catalog):
    _sell(db_session, catalog, "saw", [("bun", 2)])
    _sell(db_session, catalog, "chi", [("bun", 9)])

    result = _report(db_session, ReportKind.branch_wise, branch_ids=frozenset({catalog["chi"]}))
    assert [b.branch_name for b in result.billing] == ["Chidambaram"]
    assert result.billing_totals.total_amount == Decimal("90.00")


def test_instock_entry_report_prices_from_catalog(db_session, catalog):
    create_instock_entry(
        db_session,
        InstockEntryCreate(branch_id=catalog["saw"], items=[{"product_id": catalog["samosa"], "instock_qty": 30}]),
        now=NOW,
    )
    result = _report(db_session, ReportKind.instock_entries)

    assert result.totals.q("instock") == 30
    assert result.totals.a("instock") == Decimal("450.00")
    assert result.branch_headers == ["SAW"]
    assert result.invoices[0].invoice == "SAW-INS-260120-01"


def test_instock_status_filter_follows_approval(db_session, catalog):
    entry = create_instock_entry(
        db_session,
        InstockEntryCreate(
            branch_id=catalog["saw"],
            items=[{"product_id": catalog["bun"], "instock_qty": 3}, {"product_id": catalog["bun"], "instock_qty": 4}],
        ),
        now=NOW,
    )
    assert _report(db_session, ReportKind.instock_entries, status="approved").document_count == 0

    update_instock_status(db_session, entry.id, InstockStatusUpdate(status="approved", line_no=1))
    assert _report(db_session, ReportKind.instock_entries, status="approved").document_count == 0

    update_instock_status(db_session, entry.id, InstockStatusUpdate(status="approved", line_no=2))
    approved = _report(db_session, ReportKind.instock_entries, status="approved")
    assert approved.document_count == 1
    assert approved.totals.q("instock") == 7
    assert _report(db_session, ReportKind.instock_entries, status="waiting").document_count == 0


def test_return_report_uses_line_subtotals(db_session, catalog):
    create_return_order(
        db_session,
        ReturnOrderCreate(
            branch_id=catalog["tut"],
            items=[{"product_id": catalog["bun"], "quantity": 3, "unit_price": "8.00"}],
        ),
        now=NOW,
    )
    result = _report(db_session, ReportKind.return_orders)

    assert result.totals.q("returned") == 3
    assert result.totals.a("returned") == Decimal("24.00")


def _random_orders(db, catalog, rng):
    ordered = received = 0
    for _ in range(25):
        branch = rng.choice(["saw", "tut", "chi"])
        lines = [(rng.choice(["milk_bread", "bun", "samosa"]), rng.randint(0, 20)) for _ in range(rng.randint(1, 3))]
        delivery = NOW + timedelta(minutes=rng.randint(0, 600))
        order = _place(db, catalog, branch, lines, delivery=delivery)
        ordered += sum(q for _, q in lines)
        for line_no in range(1, len(lines) + 1):
            if rng.random() < 0.6:
                qty = rng.randint(0, 25)
                _advance(db, order, line_no, "received", qty, delivery + timedelta(hours=1))
                received += qty
    return ordered, received


@pytest.mark.parametrize("seed", [20260120, 7, 99])
def test_rollups_add_up(db_session, catalog, seed):
    ordered, received = _random_orders(db_session, catalog, random.Random(seed))

    result = _report(db_session)

    assert result.totals.q("ordered") == ordered
    assert result.totals.q("received") == received
    for m in STAGES:
        for row in result.rows:
            assert row.tally.q(m) == sum(c.q(m) for c in row.branches.values())
        levels = [result.rows, result.categories, result.departments]
        for level in levels:
            assert sum(r.tally.q(m) for r in level) == result.totals.q(m)
            assert sum(r.tally.a(m) for r in level) == result.totals.a(m)
        assert sum(t.q(m) for t in result.branch_totals.values()) == result.totals.q(m)
        assert sum(t.a(m) for t in result.branch_totals.values()) == result.totals.a(m)


def test_report_is_deterministic(db_session, catalog):
    _random_orders(db_session, catalog, random.Random(7))

    first = to_dto(_report(db_session)).model_dump()
    second = to_dto(_report(db_session)).model_dump()
    assert first == second
