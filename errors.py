"""Error types raised by the tracking core.

Each carries the HTTP status the API answers with; ``main.py`` registers a
single handler for the whole family.
"""


class TrackingError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(TrackingError):
    """Malformed payload, out-of-range coordinates or a bad phone number."""
    status_code = 400


class ConsentRequiredError(TrackingError):
    """A regulated field was about to be written without consent."""
    status_code = 403


class IdentityNotFoundError(TrackingError):
    """The visit referenced by an update call does not exist."""
    status_code = 404


class StoreUnavailableError(TrackingError):
    status_code = 503
