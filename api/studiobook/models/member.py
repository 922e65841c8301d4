"""Member model: a studio user's accounting record (the wallet).

Balances are only ever changed through services.wallet, which uses
conditional UPDATE statements so concurrent sessions cannot lose updates.
"""

from datetime import date

from sqlalchemy import Boolean, CheckConstraint, Date, String
from sqlalchemy.orm import Mapped, mapped_column

from studiobook.models.base import Base, TimestampMixin


class Member(TimestampMixin, Base):
    __tablename__ = "members"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(254), unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Monthly point budget
    monthly_points: Mapped[int] = mapped_column(nullable=False)
    monthly_points_max: Mapped[int] = mapped_column(default=40, nullable=False)

    # Weekly peak ("weekend slot") quota, counted in half-hour cells
    weekend_slots_used: Mapped[int] = mapped_column(default=0, nullable=False)
    weekend_slots_max: Mapped[int] = mapped_column(default=12, nullable=False)

    # Start of the period each reset last ran for (idempotency markers)
    monthly_reset_on: Mapped[date | None] = mapped_column(Date)
    weekly_reset_on: Mapped[date | None] = mapped_column(Date)

    __table_args__ = (
        CheckConstraint("monthly_points >= 0 AND monthly_points <= monthly_points_max", name="ck_members_points"),
        CheckConstraint(
            "weekend_slots_used >= 0 AND weekend_slots_used <= weekend_slots_max", name="ck_members_weekend_slots"
        ),
        CheckConstraint("monthly_points_max > 0 AND weekend_slots_max > 0", name="ck_members_caps"),
    )

    @property
    def weekend_slots_remaining(self) -> int:
        return self.weekend_slots_max - self.weekend_slots_used

    def __repr__(self) -> str:
        return f"<Member {self.id} {self.monthly_points}/{self.monthly_points_max}pts>"
