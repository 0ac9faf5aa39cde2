"""API Schemas - Request and Response DTOs"""
from pydantic import BaseModel
from datetime import date, datetime
from typing import List, Optional

from domain.enums import PaymentMethod, Role


# ============================================================================
# RESERVATION SCHEMAS
# ============================================================================

class CreateReservationRequest(BaseModel):
    """Create reservation request DTO (single or weekly recurring)"""
    customer_id: int
    court_id: int
    date: str
    hour: int
    duration_minutes: int = 60
    notes: Optional[str] = None
    recurring: bool = False
    weekday: Optional[int] = None
    recurrence_end: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    paid_percentage: int = 0


class RescheduleReservationRequest(BaseModel):
    """Reschedule request DTO"""
    new_date: str
    new_hour: int
    notes: Optional[str] = None


class ReservationResponse(BaseModel):
    """Reservation response DTO"""
    reservation_id: int
    customer_id: int
    court_id: int
    parent_id: Optional[int] = None
    reservation_date: date
    hour: int
    duration_minutes: int
    price_cents: int
    payment_method: Optional[str] = None
    paid_percentage: int
    amount_paid_cents: int
    payment_status: str
    status: str
    is_recurring: bool
    weekday: Optional[int] = None
    recurrence_end: Optional[date] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    version: int


class CreateReservationResponse(BaseModel):
    """Created reservation(s); `reservation` is the series parent for recurring requests"""
    reservation: ReservationResponse
    children: List[ReservationResponse] = []
    total_created: int
    message: str


class SeriesResponse(BaseModel):
    parent: ReservationResponse
    children: List[ReservationResponse]
    total: int


class CancelSeriesResponse(BaseModel):
    parent_id: int
    cancelled_count: int
    cancelled_ids: List[int]
    message: str


# ============================================================================
# AUTH SCHEMAS
# ============================================================================

class Token(BaseModel):
    access_token: str
    token_type: str


class TokenData(BaseModel):
    username: Optional[str] = None
    role: Optional[Role] = None


class UserResponse(BaseModel):
    user_id: int
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: Role
    disabled: bool = False
