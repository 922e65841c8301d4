"""Pydantic schemas for API serialisation."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

# --- Booking ---


class BookingCreate(BaseModel):
    start_time: datetime
    end_time: datetime


class ReservationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    member_id: int
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    points_cost: int
    peak_cells: int
    status: str
    cancelled_at: datetime | None
    refunded_points: int | None
    created_at: datetime


class CellPriceOut(BaseModel):
    start_time: datetime
    tier: str
    cost: int
    is_peak: bool


class QuoteOut(BaseModel):
    start_time: datetime
    end_time: datetime
    total_cost: int
    peak_cells: int
    cells: list[CellPriceOut]


class RefundQuoteOut(BaseModel):
    reservation_id: int
    hours_until_start: float
    refund_fraction: float
    refund_points: int
    refund_peak_cells: int


class CancellationOut(RefundQuoteOut):
    reservation: ReservationOut


# --- Wallet ---


class WalletOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    monthly_points: int
    monthly_points_max: int
    weekend_slots_used: int
    weekend_slots_max: int
    weekend_slots_remaining: int


class PointsTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_type: str
    points_delta: int
    weekend_slots_delta: int
    points_after: int
    weekend_slots_used_after: int
    reservation_id: int | None
    description: str
    created_at: datetime


# --- Admin ---


class MemberCreate(BaseModel):
    name: str
    email: str | None = None
    monthly_points_max: int | None = Field(default=None, gt=0)
    weekend_slots_max: int | None = Field(default=None, gt=0)


class CapUpdate(BaseModel):
    new_max: int


class BulkUpdateOut(BaseModel):
    members_updated: int


class ResetOut(BaseModel):
    members_reset: int


# --- Availability ---


class CellOut(BaseModel):
    start_time: datetime
    end_time: datetime
    tier: str
    cost: int
    is_peak: bool
    is_available: bool


class AvailabilityOut(BaseModel):
    date: date
    cells: list[CellOut]
