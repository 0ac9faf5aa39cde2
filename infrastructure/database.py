"""
Relational storage: engine/session factory and table mappings.
"""
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String, Text,
    create_engine, text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CourtRow(Base):
    __tablename__ = "courts"

    court_id = Column("id", Integer, primary_key=True)
    name = Column(String, nullable=False)
    active = Column(Boolean, nullable=False, default=True)

    reservations = relationship("ReservationRow", back_populates="court")


class CustomerRow(Base):
    __tablename__ = "customers"

    customer_id = Column("id", Integer, primary_key=True)
    full_name = Column(String, nullable=False)
    phone = Column(String)

    reservations = relationship("ReservationRow", back_populates="customer")


class ReservationRow(Base):
    __tablename__ = "reservations"

    reservation_id = Column("id", Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    court_id = Column(Integer, ForeignKey("courts.id"), nullable=False)
    parent_id = Column(Integer, ForeignKey("reservations.id"), nullable=True, index=True)

    reservation_date = Column(Date, nullable=False)
    hour = Column(Integer, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=60)

    price_cents = Column(Integer, nullable=False)
    payment_method = Column(String, nullable=True)
    paid_percentage = Column(Integer, nullable=False, default=0)
    amount_paid_cents = Column(Integer, nullable=False, default=0)

    status = Column(String, nullable=False, default="ACTIVE", index=True)

    is_recurring = Column(Boolean, nullable=False, default=False)
    weekday = Column(Integer, nullable=True)
    recurrence_end = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    version = Column(Integer, nullable=False, default=1)

    court = relationship("CourtRow", back_populates="reservations")
    customer = relationship("CustomerRow", back_populates="reservations")

    __table_args__ = (
        # At most one ACTIVE booking may start at a given court/date/hour
        Index(
            "uq_reservations_active_slot",
            "court_id", "reservation_date", "hour",
            unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
        Index("ix_reservations_court_date", "court_id", "reservation_date"),
    )


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Engine for `database_url`; SQLite gets thread-sharing (and a static pool in memory)"""
    kwargs = {"echo": echo}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

