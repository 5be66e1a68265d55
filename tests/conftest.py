"""Pytest configuration and shared fixtures."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from approvable.common.config import parse_config
from approvable.core.approval.events import ApprovalEvent, EventDispatcher
from approvable.core.approval.interception import ApprovalGate
from approvable.db.base import Base

from tests import models  # noqa: F401  registers the fake models
from tests.factories import create_fake_model, create_user


@pytest.fixture
def sample_config():
    """Sample approval field configuration dictionary."""
    return {
        "approvable_fields": [],
        "excluded_fields": [],
        "models": {
            "fake_articles": {
                "approvable_fields": ["title", "body"],
            },
        },
    }


@pytest.fixture
def engine():
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def events():
    return EventDispatcher()


@pytest.fixture
def recorded_events(events):
    """Every event dispatched during the test, in order."""
    recorded = []
    events.subscribe(ApprovalEvent, recorded.append)
    return recorded


@pytest.fixture
def gate(sample_config, events):
    return ApprovalGate.from_config(parse_config(sample_config), events=events)


@pytest.fixture
def db_session(engine, gate):
    session = sessionmaker(bind=engine)()
    gate.install(session)
    yield session
    session.close()
    gate.uninstall()


@pytest.fixture
def service(db_session, gate):
    return gate.service(db_session)


@pytest.fixture
def user_factory(db_session):
    def factory(**kwargs):
        return create_user(db_session, **kwargs)
    return factory


@pytest.fixture
def fake_model(db_session):
    """A FakeModel written without approval: name Bob, meta green."""
    return create_fake_model(db_session)
