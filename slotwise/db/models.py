from sqlalchemy import (
    Column,
    Integer,
    String,
    ForeignKey,
    Date,
    DateTime,
    Boolean,
    Enum,
    Index,
    CheckConstraint,
    UniqueConstraint,
    Text,
    text,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship, backref
from slotwise.db.base import Base


# =========================================================
# SHARED ENUMS (centralised to avoid duplication issues):
# =========================================================


#Stored booking status; pending is split by is_verified in the state machine
BookingStatusEnum = Enum(
    "pending",
    "confirmed",
    "cancelled",
    "completed",
    "no_show",
    name="booking_status_enum",
)


#How the session takes place
SessionFormatEnum = Enum("online", "in-person", "phone", name="session_format_enum")


#External calendar backends a provider can connect
CalendarProviderEnum = Enum("google", "microsoft", name="calendar_provider_enum")


#Actor type used in audit logging
ActorTypeEnum = Enum("system", "provider", "visitor", name="actor_type_enum")


# =========================================================
# PROVIDERS (core account entity):
# =========================================================


#Represents a registered service provider account
class Provider(Base):
    __tablename__ = "providers"

    #Primary identity fields
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False, index=True)
    slug = Column(String, unique=True, nullable=False, index=True)
    hashed_password = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    #Relationships to dependent resources
    bookings = relationship("Booking", back_populates="provider", cascade="all, delete-orphan")
    weekly_rules = relationship("WeeklyRule", back_populates="provider", cascade="all, delete-orphan")
    date_overrides = relationship("DateOverride", back_populates="provider", cascade="all, delete-orphan")
    calendar_credentials = relationship(
        "CalendarCredential", back_populates="provider", cascade="all, delete-orphan"
    )


# =========================================================
# SCHEDULE CONFIG (booking rules):
# =========================================================


#Slot sizing, booking window and integration flags for one provider
class ProviderScheduleConfig(Base):
    __tablename__ = "provider_schedule_configs"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), unique=True, nullable=False)

    #Slot configuration
    slot_duration_minutes = Column(Integer, nullable=False, default=30)
    buffer_minutes = Column(Integer, nullable=False, default=0)

    #Booking window
    min_notice_hours = Column(Integer, nullable=False, default=0)
    max_days_ahead = Column(Integer, nullable=False, default=30)
    timezone = Column(String, nullable=False, default="Europe/London")

    #Behaviour toggles
    requires_approval = Column(Boolean, nullable=False, default=True)
    accepts_online_booking = Column(Boolean, nullable=False, default=True)

    #Connected external calendars
    google_calendar_connected = Column(Boolean, nullable=False, default=False)
    microsoft_calendar_connected = Column(Boolean, nullable=False, default=False)

    provider = relationship("Provider", backref=backref("schedule_config", uselist=False))

    __table_args__ = (
        CheckConstraint("slot_duration_minutes > 0", name="ck_config_duration_positive"),
        CheckConstraint("buffer_minutes >= 0", name="ck_config_buffer_non_negative"),
    )


# =========================================================
# WEEKLY RULES (recurring opening hours):
# =========================================================


#One open range on a weekday; several per day are independent ranges
class WeeklyRule(Base):
    __tablename__ = "weekly_rules"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)

    #0 = Sunday ... 6 = Saturday
    day_of_week = Column(Integer, nullable=False)

    #Zero-padded HH:MM[:SS], compared lexicographically
    start_time = Column(String(8), nullable=False)
    end_time = Column(String(8), nullable=False)

    is_active = Column(Boolean, nullable=False, default=True)

    provider = relationship("Provider", back_populates="weekly_rules")

    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_rule_day_of_week"),
        Index("ix_rule_provider_day", "provider_id", "day_of_week"),
    )


# =========================================================
# DATE OVERRIDES (per-date exceptions):
# =========================================================


#Replaces the weekly rules for one specific date
class DateOverride(Base):
    __tablename__ = "date_overrides"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)

    override_date = Column(Date, nullable=False)
    is_available = Column(Boolean, nullable=False, default=False)

    #Only meaningful when is_available is true
    start_time = Column(String(8), nullable=True)
    end_time = Column(String(8), nullable=True)

    reason = Column(String(255), nullable=True)

    provider = relationship("Provider", back_populates="date_overrides")

    __table_args__ = (
        UniqueConstraint("provider_id", "override_date", name="uq_override_provider_date"),
    )


# =========================================================
# BOOKINGS (appointments / scheduling):
# =========================================================


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id = Column(Integer, nullable=True)

    #Scheduled slot, provider-local
    booking_date = Column(Date, nullable=False)
    start_time = Column(String(8), nullable=False)
    end_time = Column(String(8), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    session_format = Column(SessionFormatEnum, nullable=True)

    #Visitor-provided details
    visitor_name = Column(String, nullable=False)
    visitor_email = Column(String, nullable=False, index=True)
    visitor_phone = Column(String(20), nullable=True)
    visitor_notes = Column(Text, nullable=True)

    #Lifecycle status
    status = Column(BookingStatusEnum, nullable=False, default="pending")
    is_verified = Column(Boolean, nullable=False, default=False)

    #Single-use email verification link
    verification_token = Column(String(64), nullable=True, unique=True, index=True)
    verification_expires_at = Column(DateTime(timezone=True), nullable=True)
    consumed_verification_token = Column(String(64), nullable=True, unique=True, index=True)

    #Durable read-only access link for the visitor
    visitor_token = Column(String(64), nullable=False, unique=True, index=True)

    #Transition bookkeeping
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(ActorTypeEnum, nullable=True)
    cancellation_reason = Column(String(500), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    provider = relationship("Provider", back_populates="bookings")

    #One live booking per provider slot; cancelled rows free the slot again
    __table_args__ = (
        Index("ix_booking_provider_date", "provider_id", "booking_date"),
        Index(
            "uq_booking_active_slot",
            "provider_id",
            "booking_date",
            "start_time",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
        CheckConstraint("end_time > start_time", name="ck_booking_time_valid"),
    )


# =========================================================
# TRUSTED EMAILS (previously verified visitors):
# =========================================================


#Append-only record of addresses that skip verification
class TrustedEmail(Base):
    __tablename__ = "trusted_emails"

    id = Column(Integer, primary_key=True)
    email = Column(String, unique=True, nullable=False, index=True)
    verified_via = Column(String, nullable=False, default="booking")

    created_at = Column(DateTime(timezone=True), server_default=func.now())


# =========================================================
# CALENDAR CREDENTIALS (external calendar access):
# =========================================================


#Encrypted access token for one connected external calendar
class CalendarCredential(Base):
    __tablename__ = "calendar_credentials"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)
    calendar_provider = Column(CalendarProviderEnum, nullable=False)

    access_token_encrypted = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    #Last outcome of a call against this calendar
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    sync_error = Column(String, nullable=True)

    provider = relationship("Provider", back_populates="calendar_credentials")

    __table_args__ = (
        UniqueConstraint("provider_id", "calendar_provider", name="uq_calendar_provider"),
    )


# =========================================================
# AUDIT LOGS (immutable security trail):
# =========================================================


#Immutable audit log entry for booking transitions
class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True)
    actor_type = Column(ActorTypeEnum, nullable=False)
    actor_id = Column(Integer, nullable=True, index=True)
    action = Column(String, nullable=False)
    details = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
