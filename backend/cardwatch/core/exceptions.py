"""Custom exception classes for the application."""


class CardWatchException(Exception):
    """Base exception for all card-watch errors."""

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class FetchError(CardWatchException):
    """Raised when a page could not be fetched from a marketplace."""

    def __init__(self, site: str, message: str):
        self.site = site
        super().__init__(f"Fetch error for {site}: {message}")


class FetchTimeout(FetchError):
    """Raised when navigation or the HTTP request exceeded its time budget."""


class FetchBlocked(FetchError):
    """Raised when the marketplace answered with an anti-bot challenge."""


class FetchTransportError(FetchError):
    """Raised on network or protocol failures."""


class ExtractionError(CardWatchException):
    """Raised when a listing card cannot be projected to a listing."""


class PersistenceError(CardWatchException):
    """Raised when a database write fails for a reason other than a duplicate key."""


class WatchListUnavailable(CardWatchException):
    """Raised when the watched items cannot be loaded."""

    def __init__(self, message: str):
        super().__init__(f"Watch list unavailable: {message}")


class DedupStoreUnavailable(CardWatchException):
    """Raised when the notification store cannot be reached at startup."""

    def __init__(self, message: str):
        super().__init__(f"Deduplication store unavailable: {message}")


class RunAlreadyActive(CardWatchException):
    """Raised when a run is requested while another is in progress."""

    def __init__(self):
        super().__init__("A scrape run is already in progress")


class SiteNotRegistered(CardWatchException):
    """Raised when no adapter is registered for a site id."""

    def __init__(self, site_id: str):
        self.site_id = site_id
        super().__init__(f"No adapter registered for site '{site_id}'")
