"""All models imported here for Alembic autogenerate discovery."""

from studiobook.models.base import Base
from studiobook.models.member import Member
from studiobook.models.points import PointsTransaction, TransactionType
from studiobook.models.reservation import Reservation, ReservationCell, ReservationStatus

__all__ = [
    "Base",
    "Member",
    "Reservation",
    "ReservationCell",
    "ReservationStatus",
    "PointsTransaction",
    "TransactionType",
]
