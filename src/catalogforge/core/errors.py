class CatalogForgeError(Exception):
    """Base error for all user-facing catalogforge exceptions."""


class ConfigurationError(CatalogForgeError):
    """Raised when configuration is invalid or incomplete."""


class ValidationError(CatalogForgeError):
    """Raised when model invariants fail."""


class PageModelError(CatalogForgeError):
    """Raised when a page model document cannot be read."""


class PatternRegistryError(CatalogForgeError):
    """Raised when a pattern file cannot be loaded."""


class BudgetError(CatalogForgeError):
    """Raised when budget bookkeeping is misused."""


class BudgetExceededError(BudgetError):
    """Raised when a reservation would push spend past the ceiling."""


class CompletionServiceError(CatalogForgeError):
    """Raised when the text-completion service rejects a request."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientServiceError(CompletionServiceError):
    """Raised for rate limiting and server-side failures that may be retried."""


class MalformedResponseError(CatalogForgeError):
    """Raised when a completion does not match the response schema."""


class ExtractionCancelledError(CatalogForgeError):
    """Raised when a cancellation signal or deadline interrupts an invocation."""


class ExtractorFailureError(CatalogForgeError):
    """Raised when the deterministic extractor cannot process pages."""


class CritiqueUnavailableError(CatalogForgeError):
    """Raised when the critique service cannot produce a verdict."""


class CacheError(CatalogForgeError):
    """Raised when the chunk cache store cannot be read or written."""
