"""Global enums — must match DB CHECK constraints exactly."""

from enum import Enum


class AccountKind(str, Enum):
    GUEST = "guest"
    CAST = "cast"


class ActorRole(str, Enum):
    ADMIN = "admin"
    GUEST = "guest"
    CAST = "cast"
    SYSTEM = "system"


class ReservationType(str, Enum):
    STANDARD = "standard"
    FREE = "free"
    PISHATTO = "pishatto"  # multi-cast booking, every winner is held separately


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PointTransactionType(str, Enum):
    PENDING = "pending"     # held from the payer against a reservation
    TRANSFER = "transfer"   # earning credited to a cast at settlement
    CONVERT = "convert"     # refunds, settlement surcharges, payout debits
    GIFT = "gift"           # guest -> cast outside any reservation


class CastGrade(str, Enum):
    BEGINNER = "beginner"
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class PayoutType(str, Enum):
    INSTANT = "instant"
    SCHEDULED = "scheduled"


class PayoutStatus(str, Enum):
    REQUESTED = "requested"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class OutboxStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"
