"""SQLAlchemy models for fleet compliance data."""

from datetime import datetime, date
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Integer, Float, Boolean, DateTime, Date, Text, JSON, Numeric
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..compliance.policy import utcnow


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""
    pass


class UserProfile(Base):
    """Pilot profile, including the Remote Pilot Certificate."""
    __tablename__ = "user_profiles"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    email: Mapped[str] = mapped_column(String(200))
    full_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    pilot_certificate_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    pilot_certificate_expiry: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class UserSettings(Base):
    """Per-user notification preferences."""
    __tablename__ = "user_settings"

    user_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    expiry_reminders: Mapped[bool] = mapped_column(Boolean, default=True)
    notification_email: Mapped[bool] = mapped_column(Boolean, default=True)
    weekly_summary: Mapped[bool] = mapped_column(Boolean, default=True)


class Aircraft(Base):
    """Aircraft registration, weight, and Remote ID."""
    __tablename__ = "aircraft"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(50), index=True)
    registration_number: Mapped[str] = mapped_column(String(20))
    registration_expiry: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    manufacturer: Mapped[str] = mapped_column(String(100), default="")
    model: Mapped[str] = mapped_column(String(100), default="")
    weight_lbs: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2), nullable=True)
    remote_id_serial: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    remote_id_type: Mapped[str] = mapped_column(String(20), default="standard")  # standard, broadcast, network
    status: Mapped[str] = mapped_column(String(20), default="active")  # active, maintenance, retired
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Flight(Base):
    """Flight record with the telemetry fields compliance checks consume."""
    __tablename__ = "flights"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    pilot_id: Mapped[str] = mapped_column(String(50), index=True)
    aircraft_id: Mapped[str] = mapped_column(String(50))
    start_time: Mapped[datetime] = mapped_column(DateTime)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=0)
    max_altitude_ft: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    remote_id_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    airspace_authorization_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    compliance_status: Mapped[str] = mapped_column(String(20), default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Notification(Base):
    """In-app notification; also the dedupe ledger for expiry alerts."""
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(50), index=True)
    title: Mapped[str] = mapped_column(String(200))
    message: Mapped[str] = mapped_column(Text)
    type: Mapped[str] = mapped_column(String(20), default="info")  # compliance, expiry, info
    severity: Mapped[str] = mapped_column(String(20), default="info")
    data: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    dismissed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
