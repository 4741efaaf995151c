class ReservationError(Exception):
    """Base error. Carries the HTTP status the API layer responds with."""

    def __init__(self, message: str, status_code: int) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ValidationError(ReservationError):
    def __init__(self, message: str) -> None:
        super().__init__(message, 400)


class SlotFull(ReservationError):
    def __init__(self, date: str, time: str) -> None:
        self.date = date
        self.time = time
        super().__init__(f"slot {date} {time} is full", 409)


class StorageError(ReservationError):
    def __init__(self, message: str = "db error") -> None:
        super().__init__(message, 500)


class NotificationError(ReservationError):
    # Raised inside dispatchers only; never reaches the reservation caller
    def __init__(self, message: str) -> None:
        super().__init__(message, 502)


class InvalidSignature(ReservationError):
    def __init__(self, message: str = "invalid webhook signature") -> None:
        super().__init__(message, 401)
