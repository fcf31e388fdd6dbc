"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Auth/Caller
  2xxx: Ledger
  3xxx: Reservation / matching
  4xxx: Payout
  5xxx: Payment processor
  9xxx: System
"""


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 1xxx: Auth/Caller ---

class InvalidCredentialsError(AppError):
    def __init__(self) -> None:
        super().__init__(1001, "Invalid or expired token", 401)


class ForbiddenError(AppError):
    def __init__(self, required_role: str) -> None:
        super().__init__(1002, f"Caller must act as {required_role}", 403)


# --- 2xxx: Ledger ---

class InsufficientFundsError(AppError):
    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            2001,
            f"Insufficient points: required {required}, available {available}",
            422,
        )


class AccountNotFoundError(AppError):
    def __init__(self, kind: str, account_id: str) -> None:
        super().__init__(2002, f"{kind.capitalize()} account not found: {account_id}", 404)


class NoPendingFundsError(AppError):
    def __init__(self, reservation_id: str) -> None:
        super().__init__(
            2003, f"No outstanding held points for reservation {reservation_id}", 409
        )


# --- 3xxx: Reservation ---

class ReservationNotFoundError(AppError):
    def __init__(self, reservation_id: str) -> None:
        super().__init__(3001, f"Reservation not found: {reservation_id}", 404)


class ReservationClosedError(AppError):
    def __init__(self, reservation_id: str) -> None:
        super().__init__(3002, f"Reservation is closed: {reservation_id}", 409)


class DuplicateApplicationError(AppError):
    def __init__(self, reservation_id: str, cast_id: str) -> None:
        super().__init__(
            3003, f"Cast {cast_id} already applied to reservation {reservation_id}", 409
        )


class ApplicationNotFoundError(AppError):
    def __init__(self, application_id: str) -> None:
        super().__init__(3004, f"Application not found: {application_id}", 404)


class NotPendingError(AppError):
    def __init__(self, application_id: str) -> None:
        super().__init__(3005, f"Application is no longer pending: {application_id}", 409)


class UnsupportedTypeError(AppError):
    def __init__(self, reservation_type: str, operation: str) -> None:
        super().__init__(
            3006, f"Reservation type {reservation_type} does not support {operation}", 422
        )


class AlreadySettledError(AppError):
    def __init__(self, reservation_id: str) -> None:
        super().__init__(3007, f"Reservation already settled: {reservation_id}", 409)


class ReservationNotMatchedError(AppError):
    def __init__(self, reservation_id: str) -> None:
        super().__init__(3008, f"Reservation has no approved cast: {reservation_id}", 422)


# --- 4xxx: Payout ---

class BelowMinimumError(AppError):
    def __init__(self, amount: int, minimum: int) -> None:
        super().__init__(
            4001, f"Payout amount {amount} is below the minimum of {minimum} points", 422
        )


class InsufficientEligibleFundsError(AppError):
    def __init__(self, requested: int, eligible: int) -> None:
        super().__init__(
            4002,
            f"Requested {requested} points exceeds instant-eligible {eligible} points",
            422,
        )


class PayoutNotFoundError(AppError):
    def __init__(self, payout_id: str) -> None:
        super().__init__(4003, f"Payout not found: {payout_id}", 404)


class PayoutAccountNotReadyError(AppError):
    def __init__(self, cast_id: str) -> None:
        super().__init__(4004, f"Payout account is not ready for cast {cast_id}", 422)


# --- 5xxx: Payment processor ---

class SignatureVerificationFailedError(AppError):
    def __init__(self) -> None:
        super().__init__(5001, "Webhook signature verification failed", 400)


class InvalidPayloadError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(5002, f"Invalid webhook payload: {detail}", 400)


class ProcessorError(AppError):
    def __init__(self, detail: str, code: int = 5003, http_status: int = 502) -> None:
        super().__init__(code, f"Payment processor error: {detail}", http_status)


class ProcessorTimeoutError(ProcessorError):
    def __init__(self, detail: str = "request timed out") -> None:
        super().__init__(detail, code=5004, http_status=504)


# --- 9xxx: System ---

class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)
