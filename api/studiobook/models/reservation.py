"""Reservation model.

A reservation holds a half-open interval [start_time, end_time) on the single
studio. Reservations are never deleted; cancelling flips the status and
releases the cells.

ReservationCell is the overlap guard: one row per 30-minute cell held by a
confirmed reservation, unique on cell_start. Two concurrent bookings of an
overlapping range cannot both insert their cells, whatever the isolation level.
"""

import enum
from datetime import datetime

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from studiobook.models.base import Base, TimestampMixin, UTCDateTime


class ReservationStatus(enum.StrEnum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class Reservation(TimestampMixin, Base):
    __tablename__ = "reservations"

    id: Mapped[int] = mapped_column(primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id"), nullable=False)

    # When
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # What was charged
    points_cost: Mapped[int] = mapped_column(nullable=False)
    peak_cells: Mapped[int] = mapped_column(default=0, nullable=False)

    # Status
    status: Mapped[ReservationStatus] = mapped_column(
        Enum(ReservationStatus, name="reservation_status", values_callable=lambda e: [x.value for x in e]),
        default=ReservationStatus.CONFIRMED,
        nullable=False,
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    refunded_points: Mapped[int | None] = mapped_column()

    cells: Mapped[list["ReservationCell"]] = relationship(back_populates="reservation", lazy="raise")

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_reservations_range"),
        Index("ix_reservations_window", "status", "start_time", "end_time"),
        Index("ix_reservations_member", "member_id", "start_time"),
    )

    @property
    def duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)

    def __repr__(self) -> str:
        return f"<Reservation {self.id} {self.start_time:%Y-%m-%d %H:%M}-{self.end_time:%H:%M} {self.status.value}>"


class ReservationCell(Base):
    __tablename__ = "reservation_cells"

    id: Mapped[int] = mapped_column(primary_key=True)
    reservation_id: Mapped[int] = mapped_column(ForeignKey("reservations.id"), nullable=False, index=True)
    cell_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, unique=True)

    reservation: Mapped["Reservation"] = relationship(back_populates="cells", lazy="raise")
