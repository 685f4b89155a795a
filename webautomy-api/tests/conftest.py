import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import Mock

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.database import Base
from app.models import AutomationRule, Channel, Organization, Profile, Wallet

_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def db_session():
    """Mock database session."""
    return Mock()


@pytest.fixture
def mock_env(monkeypatch):
    """Set test environment variables."""
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("META_VERIFY_TOKEN", "verify-me")
    monkeypatch.setenv("SUPABASE_URL", "https://supabase.test")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")


@pytest.fixture
def sqlite_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=sqlite_engine)


@pytest.fixture
def db(session_factory):
    """Real session on an in-memory SQLite database."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_org(db):
    def _make(name="Acme", balance="1.00"):
        org = Organization(name=name, created_at=_EPOCH)
        db.add(org)
        db.flush()
        if balance is not None:
            db.add(Wallet(org_id=org.id, balance=Decimal(balance), updated_at=_EPOCH))
        db.commit()
        return org

    return _make


@pytest.fixture
def make_channel(db):
    def _make(org, phone_number_id="1000001", status="connected", access_token="token-abc"):
        channel = Channel(
            org_id=org.id,
            phone_number_id=phone_number_id,
            waba_id="waba-1",
            access_token=access_token,
            status=status,
            display_name="WhatsApp Business",
            created_at=_EPOCH,
        )
        db.add(channel)
        db.commit()
        return channel

    return _make


@pytest.fixture
def make_rule(db):
    counter = {"n": 0}

    def _make(org, trigger, reply, match_type="contains", is_active=True, priority=0, created_at=None):
        counter["n"] += 1
        rule = AutomationRule(
            org_id=org.id,
            trigger_keyword=trigger,
            match_type=match_type,
            reply_message=reply,
            is_active=is_active,
            priority=priority,
            created_at=created_at or _EPOCH + timedelta(seconds=counter["n"]),
        )
        db.add(rule)
        db.commit()
        return rule

    return _make


@pytest.fixture
def make_profile(db):
    def _make(user_id, org=None, role="member"):
        profile = Profile(id=user_id, org_id=org.id if org else None, role=role)
        db.add(profile)
        db.commit()
        return profile

    return _make
