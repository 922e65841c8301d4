"""Points transaction model: the wallet's audit trail."""

import enum

from sqlalchemy import Enum, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from studiobook.models.base import Base, TimestampMixin


class TransactionType(enum.StrEnum):
    CHARGE = "charge"
    REFUND = "refund"
    MONTHLY_RESET = "monthly_reset"
    WEEKLY_RESET = "weekly_reset"
    CAP_CHANGE = "cap_change"


class PointsTransaction(TimestampMixin, Base):
    """A single wallet movement. Negative deltas are debits."""

    __tablename__ = "points_transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id"), nullable=False)
    transaction_type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, name="transaction_type", values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    points_delta: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    weekend_slots_delta: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    points_after: Mapped[int] = mapped_column(Integer, nullable=False)
    weekend_slots_used_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reservation_id: Mapped[int | None] = mapped_column(ForeignKey("reservations.id"))
    description: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (Index("ix_points_txn_member", "member_id", "created_at"),)

    def __repr__(self) -> str:
        return f"<PointsTransaction {self.transaction_type.value} {self.points_delta}pts member={self.member_id}>"
