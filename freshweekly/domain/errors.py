class ProviderError(Exception):
    """Base class for failures surfaced by a catalog provider."""


class RateLimited(ProviderError):
    """Operation was rate limited by provider. Includes suggested wait time in milliseconds."""

    def __init__(self, retry_after_ms: int, message: str = "Rate limited") -> None:
        super().__init__(message)
        self.retry_after_ms = retry_after_ms


class TemporaryFailure(ProviderError):
    """Transient provider or network failure. Retrying may succeed."""


class PermanentFailure(ProviderError):
    """Non-retriable failure due to invalid input or authorization issues."""


class NotFound(ProviderError):
    """Requested resource was not found."""


class GenerationError(Exception):
    """Base class for failures of a playlist generation run."""


class EmptySourceError(GenerationError):
    """Source playlist yields no usable artist signal."""


class CollectorFetchError(GenerationError):
    """A catalog fetch inside a discovery tier failed."""


class NoCandidatesError(GenerationError):
    """All discovery tiers were exhausted without accepting a track."""


class PlaylistWriteError(GenerationError):
    """Creating the target playlist or writing its tracks failed."""
