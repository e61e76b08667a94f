"""Error taxonomy for feed ingestion."""

from typing import Optional


class VesperError(Exception):
    """Base class for engine errors."""


class ValidationError(VesperError):
    """Subscription URL is malformed, not http(s), or points at a private host."""


class FetchFailure(VesperError):
    """One concrete failure observed while fetching a feed."""

    kind = "network"
    retryable = True


class NetworkError(FetchFailure):
    """Connection or transport failure reaching a proxy or upstream."""


class HttpStatusError(FetchFailure):
    """Non-2xx response, or an HTML error page where feed content was expected."""

    kind = "http"

    def __init__(self, status: int, message: str = None):
        self.status = status
        super().__init__(message or f"HTTP {status}")


class FetchTimeoutError(FetchFailure):
    """A single HTTP attempt exceeded its time budget."""

    kind = "timeout"


class ParseError(FetchFailure):
    """The body could not be interpreted as RSS, Atom, RDF or normalized JSON."""

    kind = "parse"
    retryable = False

    def __init__(self, message: str, fragment: str = ""):
        self.fragment = fragment
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if self.fragment:
            return f"{base} (near: {self.fragment[:80]!r})"
        return base


class FetchError(VesperError):
    """All candidates and proxy routes for a feed URL were exhausted."""

    def __init__(self, url: str, cause: Optional[FetchFailure]):
        self.url = url
        self.cause = cause
        detail = str(cause) if cause else "no candidates to try"
        super().__init__(f"Failed to fetch {url}: {detail}")

    @property
    def kind(self) -> str:
        """Classification of the last failure: network, http, timeout or parse."""
        return self.cause.kind if self.cause else "network"
