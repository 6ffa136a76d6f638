"""Fixtures shared by the billing test modules."""

import pytest
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from billing import worker as worker_module
from billing.core import database as db_module
from billing.core.database import Base, build_engine, get_db, init_db
from billing.models.organization import Organization
from billing.models.shared import DEFAULT_ORGANIZATION_ID

# One shared in-memory database; StaticPool hands every session the same connection.
_test_engine = build_engine("sqlite://", poolclass=StaticPool)
_TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_test_engine)

DEFAULT_ORG_ID = DEFAULT_ORGANIZATION_ID


def _seed_default_organization(session: Session) -> None:
    if session.get(Organization, DEFAULT_ORG_ID) is not None:
        return
    session.add(
        Organization(
            id=DEFAULT_ORG_ID,
            name="Default Test Organization",
            email="billing@default.test",
            invoice_prefix="INV",
            payment_details={"bank_name": "Test Bank", "mpesa_paybill": "123456"},
        )
    )
    session.commit()


@pytest.fixture(autouse=True)
def setup_database(monkeypatch):
    """Point the app at the in-memory database, seed it, and wipe it afterwards."""
    monkeypatch.setattr(db_module, "engine", _test_engine)
    monkeypatch.setattr(db_module, "SessionLocal", _TestSessionLocal)
    # worker.py binds SessionLocal at import time
    monkeypatch.setattr(worker_module, "SessionLocal", _TestSessionLocal)

    init_db(bind=_test_engine)
    session = _TestSessionLocal()
    try:
        _seed_default_organization(session)
    finally:
        session.close()

    yield

    with _test_engine.connect() as conn:
        # Children before parents, so foreign keys stay enforced.
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
        conn.commit()


@pytest.fixture
def db_session():
    gen = get_db()
    db = next(gen)
    try:
        yield db
    finally:
        gen.close()


@pytest.fixture
def default_org_id():
    return DEFAULT_ORG_ID
