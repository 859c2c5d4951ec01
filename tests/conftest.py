"""Shared fixtures: in-memory database and record factories."""

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fleet_compliance.database.models import (
    Aircraft,
    Base,
    Flight,
    UserProfile,
    UserSettings,
)

# Monday
TODAY = date(2025, 6, 2)
NOW = datetime(2025, 6, 2, 12, 0)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.close()


def add_pilot(
    db,
    user_id="pilot-1",
    email="pilot@example.com",
    full_name="Pat Pilot",
    certificate_expiry=TODAY + timedelta(days=365),
    settings=True,
    **settings_kwargs,
):
    profile = UserProfile(
        id=user_id,
        email=email,
        full_name=full_name,
        pilot_certificate_number="RP-1001",
        pilot_certificate_expiry=certificate_expiry,
    )
    db.add(profile)
    if settings:
        db.add(UserSettings(user_id=user_id, **settings_kwargs))
    db.commit()
    return profile


def add_aircraft(
    db,
    aircraft_id="ac-1",
    user_id="pilot-1",
    registration_number="FA3ABC123",
    registration_expiry=TODAY + timedelta(days=365),
    weight_lbs=Decimal("2.00"),
    status="active",
):
    aircraft = Aircraft(
        id=aircraft_id,
        user_id=user_id,
        registration_number=registration_number,
        registration_expiry=registration_expiry,
        manufacturer="DJI",
        model="Mavic 3",
        weight_lbs=weight_lbs,
        status=status,
    )
    db.add(aircraft)
    db.commit()
    return aircraft


def add_flight(
    db,
    flight_id="fl-1",
    pilot_id="pilot-1",
    aircraft_id="ac-1",
    start_time=NOW - timedelta(days=1),
    remote_id_verified=True,
    max_altitude_ft=200.0,
    airspace_authorization_id=None,
    compliance_status="pending",
    duration_minutes=30,
):
    flight = Flight(
        id=flight_id,
        pilot_id=pilot_id,
        aircraft_id=aircraft_id,
        start_time=start_time,
        duration_minutes=duration_minutes,
        remote_id_verified=remote_id_verified,
        max_altitude_ft=max_altitude_ft,
        airspace_authorization_id=airspace_authorization_id,
        compliance_status=compliance_status,
    )
    db.add(flight)
    db.commit()
    return flight
