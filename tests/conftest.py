"""
Pytest fixtures: an in-memory SQLite database per test, a barber with
weekly hours and a service, two customers, and a fixed clock.
"""
from datetime import datetime, time
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from barber_booking.db import get_session
from barber_booking.deps import get_now
from barber_booking.main import app
from barber_booking.models import Service, User, WorkingHours

# Monday 2030-01-07, 08:00 shop time
NOW = datetime(2030, 1, 7, 8, 0)


def actor_for(user: User) -> dict:
    return {"id": user.id, "email": user.email, "role": user.role}


@pytest.fixture(scope="function")
def session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    engine.dispose()


def _add_user(session, email, role):
    user = User(email=email, password_hash="not-a-real-hash", role=role)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def barber(session):
    user = _add_user(session, "barber@example.com", "barber")
    # Mon-Sat 09:00-17:00, Sunday closed
    for weekday in range(7):
        session.add(WorkingHours(
            barber_id=user.id,
            weekday=weekday,
            is_open=weekday < 6,
            start_time=time(9, 0) if weekday < 6 else None,
            end_time=time(17, 0) if weekday < 6 else None,
        ))
    session.commit()
    return user


@pytest.fixture
def other_barber(session):
    return _add_user(session, "other-barber@example.com", "barber")


@pytest.fixture
def customer(session):
    return _add_user(session, "customer@example.com", "customer")


@pytest.fixture
def other_customer(session):
    return _add_user(session, "someone-else@example.com", "customer")


@pytest.fixture
def service(session, barber):
    svc = Service(barber_id=barber.id, name="Haircut", duration=30, price=Decimal("40.00"))
    session.add(svc)
    session.commit()
    session.refresh(svc)
    return svc


@pytest.fixture
def client(session):
    """TestClient sharing the test session and the fixed clock."""
    def _get_session():
        yield session

    app.dependency_overrides[get_session] = _get_session
    app.dependency_overrides[get_now] = lambda: NOW
    yield TestClient(app)
    app.dependency_overrides.clear()
