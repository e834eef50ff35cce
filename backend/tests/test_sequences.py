import threading
from datetime import date, datetime, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from backend.app.db.base import Base
from backend.app.db.models.core_types import DocumentKind
from backend.app.db.models.models_v1 import Branch, DocumentSequence
from backend.app.db.session import make_engine, read_only
from backend.app.schemas.stock_order import StockOrderCreate
from backend.services.business_time import LocalDay
from backend.services.catalog import BranchRef, branch_code, list_branches
from backend.services.errors import AllocationContentionError, ProductNotFoundError, UnknownBranchError
from backend.services.orders import create_stock_order
from backend.services.sequences import (
    allocate,
    format_identifier,
    identifier_sort_key,
    is_contention,
    mint_identifier,
    parse_identifier,
)

MORNING = datetime(2026, 1, 20, 4, 0, tzinfo=timezone.utc)  # 09:30 local
DAY = LocalDay(date(2026, 1, 20))


def test_format_identifier_pads_to_two_digits_and_widens():
    assert format_identifier("SAW", DocumentKind.stock_order, DAY, 7) == "SAW-STC-260120-07"
    assert format_identifier("SAW", DocumentKind.stock_order, DAY, 123) == "SAW-STC-260120-123"


def test_parse_identifier():
    parsed = parse_identifier("TUT-RET-260120-100")
    assert parsed.branch_code == "TUT"
    assert parsed.kind == DocumentKind.return_order
    assert parsed.yymmdd == "260120"
    assert parsed.seq == 100

    assert parse_identifier("SAW-BIL-260120-03").kind == DocumentKind.bill

    with pytest.raises(ValueError):
        parse_identifier("SAW-XYZ-260120-01")
    with pytest.raises(ValueError):
        parse_identifier("SAW-STC-260120-1")


def test_sort_key_orders_numerically_past_99():
    ids = ["SAW-STC-260120-100", "SAW-STC-260120-99", "SAW-STC-260120-02"]
    assert sorted(ids, key=identifier_sort_key) == [
        "SAW-STC-260120-02",
        "SAW-STC-260120-99",
        "SAW-STC-260120-100",
    ]


def test_allocate_counts_per_scope(db_session):
    assert [allocate(db_session, "SAW", DocumentKind.stock_order, DAY) for _ in range(3)] == [1, 2, 3]
    # kind, branch and day are each their own scope
    assert allocate(db_session, "SAW", DocumentKind.return_order, DAY) == 1
    assert allocate(db_session, "TUT", DocumentKind.stock_order, DAY) == 1
    assert allocate(db_session, "SAW", DocumentKind.stock_order, DAY.next()) == 1
    db_session.commit()

    row = db_session.execute(
        select(DocumentSequence).where(
            DocumentSequence.branch_code == "SAW",
            DocumentSequence.kind == DocumentKind.stock_order,
            DocumentSequence.local_day == DAY.day,
        )
    ).scalar_one()
    assert row.last_value == 3


def test_allocate_rejects_plain_dates(db_session):
    with pytest.raises(TypeError):
        allocate(db_session, "SAW", DocumentKind.stock_order, date(2026, 1, 20))


def test_rolled_back_allocation_is_not_consumed(db_session):
    assert allocate(db_session, "SAW", DocumentKind.stock_order, DAY) == 1
    db_session.rollback()
    assert allocate(db_session, "SAW", DocumentKind.stock_order, DAY) == 1


def test_mint_identifier_uses_business_day(db_session):
    branch = BranchRef(id=1, name="Sawyerpuram", company_id=1)

    # 23:44 on the 19th, local time
    late, day = mint_identifier(
        db_session, branch, DocumentKind.stock_order, datetime(2026, 1, 19, 18, 14, tzinfo=timezone.utc)
    )
    # 00:14 on the 20th, local time
    early, next_day = mint_identifier(
        db_session, branch, DocumentKind.stock_order, datetime(2026, 1, 19, 18, 44, tzinfo=timezone.utc)
    )

    assert late == "SAW-STC-260119-01"
    assert early == "SAW-STC-260120-01"
    assert day.next() == next_day


def test_branch_code_has_a_single_source(db_session, catalog):
    refs = list_branches(db_session)

    assert [b.code for b in refs] == ["CHI", "SAW", "TUT"]
    assert all(b.code == branch_code(b.name) for b in refs)
    assert branch_code("st. mary") == "ST."
    # the ORM row carries no code of its own
    assert not hasattr(Branch, "code")


def test_two_orders_same_branch_same_day(db_session, catalog):
    payload = StockOrderCreate(
        branch_id=catalog["saw"],
        delivery_date=MORNING,
        items=[{"product_id": catalog["bun"], "required_qty": 5}],
    )
    first = create_stock_order(db_session, payload, now=MORNING)
    second = create_stock_order(db_session, payload, now=MORNING)

    assert first.invoice_number == "SAW-STC-260120-01"
    assert second.invoice_number == "SAW-STC-260120-02"


def test_failed_create_consumes_no_number(db_session, catalog):
    bad_product = StockOrderCreate(
        branch_id=catalog["saw"],
        delivery_date=MORNING,
        items=[{"product_id": 999, "required_qty": 1}],
    )
    with pytest.raises(ProductNotFoundError):
        create_stock_order(db_session, bad_product, now=MORNING)

    bad_branch = StockOrderCreate(
        branch_id=999,
        delivery_date=MORNING,
        items=[{"product_id": catalog["bun"], "required_qty": 1}],
    )
    with pytest.raises(UnknownBranchError):
        create_stock_order(db_session, bad_branch, now=MORNING)

    good = bad_branch.model_copy(update={"branch_id": catalog["saw"]})
    assert create_stock_order(db_session, good, now=MORNING).invoice_number == "SAW-STC-260120-01"


def test_concurrent_allocations_are_unique_and_gapless(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'sequences.db'}")
    Base.metadata.create_all(bind=eng)

    workers, per_worker = 8, 5
    results: list[int] = []
    errors: list[Exception] = []
    lock = threading.Lock()
    start = threading.Barrier(workers)

    def worker():
        start.wait()
        try:
            for _ in range(per_worker):
                with Session(eng) as session:
                    seq = allocate(session, "SAW", DocumentKind.stock_order, DAY)
                    session.commit()
                with lock:
                    results.append(seq)
        except Exception as exc:  # collected and asserted below
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    eng.dispose()

    assert errors == []
    assert sorted(results) == list(range(1, workers * per_worker + 1))


class _SqliteError(Exception):
    pass


class _PgError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


def _locked():
    return OperationalError("INSERT INTO document_sequences ...", {}, _SqliteError("database is locked"))


def _flaky_execute(monkeypatch, session, failures):
    """Make the next ``failures`` statements on ``session`` fail with a lock timeout."""
    calls = {"n": 0}
    real_execute = session.execute

    def execute(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] <= failures:
            raise _locked()
        return real_execute(*args, **kwargs)

    monkeypatch.setattr(session, "execute", execute)
    return calls


@pytest.fixture
def sleeps(monkeypatch):
    delays: list[float] = []
    monkeypatch.setattr("backend.services.sequences.time.sleep", delays.append)
    return delays


def test_contention_classification():
    assert is_contention(_locked())
    assert is_contention(OperationalError("x", {}, _PgError("40001")))
    assert is_contention(OperationalError("x", {}, _PgError("40P01")))
    assert is_contention(OperationalError("x", {}, _PgError("55P03")))

    assert not is_contention(OperationalError("x", {}, _SqliteError("no such table: document_sequences")))
    assert not is_contention(OperationalError("x", {}, _PgError("08006")))
    assert not is_contention(IntegrityError("x", {}, _PgError("23514")))


def test_lock_timeouts_are_retried_until_success(db_session, monkeypatch, sleeps):
    calls = _flaky_execute(monkeypatch, db_session, failures=2)

    seq = allocate(db_session, "SAW", DocumentKind.stock_order, DAY, attempts=4, base_delay_ms=1)

    assert seq == 1
    assert calls["n"] == 3
    assert len(sleeps) == 2
    # jittered exponential backoff: 1ms then 2ms, each within +-50%
    assert 0.0005 <= sleeps[0] <= 0.0015
    assert 0.001 <= sleeps[1] <= 0.003


def test_retry_budget_is_bounded(db_session, monkeypatch, sleeps):
    calls = _flaky_execute(monkeypatch, db_session, failures=10)

    with pytest.raises(AllocationContentionError) as err:
        allocate(db_session, "SAW", DocumentKind.stock_order, DAY, attempts=3, base_delay_ms=1)

    assert calls["n"] == 3
    assert len(sleeps) == 2
    assert err.value.retryable is True
    assert isinstance(err.value.__cause__, OperationalError)

    # the savepoints were rolled back; the session is still usable
    monkeypatch.undo()
    assert allocate(db_session, "SAW", DocumentKind.stock_order, DAY) == 1


def test_missing_table_is_not_treated_as_contention(db_session, engine, sleeps):
    DocumentSequence.__table__.drop(bind=engine)

    with pytest.raises(DBAPIError) as err:
        allocate(db_session, "SAW", DocumentKind.stock_order, DAY, attempts=4, base_delay_ms=1)

    assert not isinstance(err.value, AllocationContentionError)
    assert sleeps == []


def test_real_lock_timeout_exhausts_the_budget(tmp_path, sleeps):
    eng = make_engine(f"sqlite:///{tmp_path / 'locked.db'}", connect_args={"timeout": 0.05})
    Base.metadata.create_all(bind=eng)

    holder = eng.connect()
    holder.exec_driver_sql("SELECT 1")  # BEGIN IMMEDIATE: holds the write lock
    try:
        with Session(eng) as session:
            with pytest.raises(AllocationContentionError):
                allocate(session, "SAW", DocumentKind.stock_order, DAY, attempts=2, base_delay_ms=1)
        assert len(sleeps) == 1
    finally:
        holder.rollback()
        holder.close()

    with Session(eng) as session:
        assert allocate(session, "SAW", DocumentKind.stock_order, DAY) == 1
        session.commit()
    eng.dispose()


def test_open_report_read_does_not_block_allocation(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'shared.db'}", connect_args={"timeout": 0.05})
    Base.metadata.create_all(bind=eng)

    with Session(read_only(eng)) as report:
        report.execute(select(DocumentSequence)).all()  # read transaction stays open

        with Session(eng) as writer:
            assert allocate(writer, "SAW", DocumentKind.stock_order, DAY, attempts=1) == 1
            writer.rollback()

    eng.dispose()
