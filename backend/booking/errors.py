# backend/booking/errors.py
__all__ = [
    "ScrapeError",
    "TransportError",
    "DecodeError",
    "NotFoundError",
    "ParseError",
    "ValidationError",
    "StorageError",
]


class ScrapeError(Exception):
    """Base error for the booking scraper; carries whether a retry may help."""

    retryable = True

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class TransportError(ScrapeError):
    """Connection, timeout or malformed HTTP response."""


class DecodeError(ScrapeError):
    """Body could not be decoded for the declared Content-Encoding."""


class NotFoundError(ScrapeError):
    """Apollo blob or a required node/collection is absent from the page."""


class ParseError(ScrapeError):
    """Embedded state document is not valid JSON (or not a JSON object)."""


class ValidationError(ScrapeError):
    """A record failed the document checks that run before persistence."""

    retryable = False


class StorageError(ScrapeError):
    """Database unreachable or a write was rejected."""

    retryable = False
