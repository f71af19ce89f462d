"""Custom exceptions for exicon_enricher.

Every stage of the enrichment pipeline raises a subclass of
ExiconEnricherError so callers can decide per failure class whether to skip
an item, stub a batch, or abort the run.

Example:
    >>> try:
    ...     raise FetchError("Detail request failed", status=502, slug="burpee")
    ... except ExiconEnricherError as e:
    ...     print(e.context["slug"])
    burpee
"""


class ExiconEnricherError(Exception):
    """Base exception for all exicon_enricher errors.

    Attributes:
        message: Human-readable error description
        context: Additional context about where/when the error occurred
    """

    def __init__(self, message: str, **context: str | int | float | bool | None) -> None:
        """Initialize the exception with a message and optional context.

        Args:
            message: Human-readable error description
            **context: Additional context (e.g., slug="burpee", batch=3)
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format error message with context."""
        if self.context:
            context_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


class FetchError(ExiconEnricherError):
    """Error fetching a list or detail payload from the content API.

    Raised when:
    - The API answers with a non-2xx status
    - The connection fails or times out
    - The payload is not valid JSON

    Callers in the detail loop log it and skip the item.

    Attributes:
        status: HTTP status code, or None for transport failures
        slug: Slug of the requested item, or None for the list endpoint

    Example:
        >>> raise FetchError("Detail request failed", status=404, slug="merkin")
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        slug: str | None = None,
        **context: str | int | float | bool | None,
    ) -> None:
        super().__init__(message, status=status, slug=slug, **context)
        self.status = status
        self.slug = slug


class EnrichmentError(ExiconEnricherError):
    """Error from the LLM call for one batch.

    Raised when:
    - The OpenAI API call fails after all retry attempts
    - The response carries no choices

    The orchestrator catches it and fills the whole batch with defaults.

    Example:
        >>> raise EnrichmentError("LLM call failed", batch=4, model="o4-mini")
    """

    pass


class StoreError(ExiconEnricherError):
    """Error talking to the document store before any write happens.

    Raised when:
    - The MongoDB server cannot be reached
    - Index creation fails

    Per-chunk write failures are counted, not raised.

    Example:
        >>> raise StoreError("Could not create indexes", collection="exicon-items")
    """

    pass


class SnapshotError(ExiconEnricherError):
    """Error reading or writing an enrichment snapshot.

    Example:
        >>> raise SnapshotError("Snapshot is not a JSON array", path="data/x.json")
    """

    pass


class ConfigurationError(ExiconEnricherError):
    """Error in configuration or settings.

    Raised when:
    - Configuration file is invalid
    - Settings have invalid values
    - Environment variables are malformed

    Example:
        >>> raise ConfigurationError("batch_size must be at least 1", batch_size=0)
    """

    pass


class RetryableError(ExiconEnricherError):
    """Error that might succeed if retried.

    Attributes:
        attempt: Current attempt number (1-indexed)
        max_attempts: Maximum number of attempts allowed
        retry_after: Suggested delay before next retry (seconds)

    Example:
        >>> raise RetryableError("Rate limited", attempt=1, max_attempts=3, retry_after=20.0)
    """

    def __init__(
        self,
        message: str,
        attempt: int = 1,
        max_attempts: int = 3,
        retry_after: float = 1.0,
        **context: str | int | float | bool | None,
    ) -> None:
        super().__init__(message, **context)
        self.attempt = attempt
        self.max_attempts = max_attempts
        self.retry_after = retry_after

    @property
    def should_retry(self) -> bool:
        """Check if another retry attempt should be made."""
        return self.attempt < self.max_attempts

    def with_next_attempt(self, backoff_multiplier: float = 2.0) -> "RetryableError":
        """Create a new error for the next retry attempt."""
        return RetryableError(
            self.message,
            attempt=self.attempt + 1,
            max_attempts=self.max_attempts,
            retry_after=self.retry_after * backoff_multiplier,
            **self.context,
        )

    def __str__(self) -> str:
        """Format error with retry information."""
        base = super().__str__()
        return f"{base} [attempt {self.attempt}/{self.max_attempts}]"
