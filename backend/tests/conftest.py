import os

# must be set before backend.app.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["BUSINESS_TIMEZONE"] = "Asia/Kolkata"

from decimal import Decimal

import pytest
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from backend.app.db.base import Base
from backend.app.db.models.models_v1 import Branch, Category, Company, Department, Product
from backend.app.db.session import make_engine


@pytest.fixture(scope="function")
def engine():
    """
    Fresh schema per test.

    Runs on an in-memory SQLite database unless TEST_DATABASE_URL points
    at a real server (e.g. a throwaway Postgres).
    """
    url = os.getenv("TEST_DATABASE_URL")
    if url:
        eng = make_engine(url)
    else:
        eng = make_engine("sqlite://", poolclass=StaticPool)

    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(bind=eng)
        eng.dispose()


@pytest.fixture(scope="function")
def db_session(engine) -> Session:
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def catalog(db_session):
    """
    Two companies, three branches, two departments.

        Sawyerpuram (SAW), Tuticorin (TUT) -> company 1
        Chidambaram (CHI)                  -> company 2

        Bakery / Breads:  Milk Bread 40.00, Bun 10.00
        Snacks / Savory:  Samosa 15.00
    """
    db = db_session
    db.add_all([Company(id=1, name="Demo Bakeries"), Company(id=2, name="Coast Foods")])
    db.flush()
    db.add_all(
        [
            Branch(id=1, company_id=1, name="Sawyerpuram"),
            Branch(id=2, company_id=1, name="Tuticorin"),
            Branch(id=3, company_id=2, name="Chidambaram"),
        ]
    )
    db.add_all([Department(id=1, name="Bakery"), Department(id=2, name="Snacks")])
    db.flush()
    db.add_all([Category(id=1, name="Breads", department_id=1), Category(id=2, name="Savory", department_id=2)])
    db.flush()
    db.add_all(
        [
            Product(id=1, name="Milk Bread", price=Decimal("40.00"), category_id=1),
            Product(id=2, name="Bun", price=Decimal("10.00"), category_id=1),
            Product(id=3, name="Samosa", price=Decimal("15.00"), category_id=2),
        ]
    )
    db.commit()
    return {"saw": 1, "tut": 2, "chi": 3, "milk_bread": 1, "bun": 2, "samosa": 3}
