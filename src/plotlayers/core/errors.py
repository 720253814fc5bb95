"""Error taxonomy.

Only ValidationError ever reaches an HTTP caller (as a 400). Provider
errors are absorbed into a found=False layer entry, and transient errors
are retried by the batch pool.
"""


class PlotLayersError(Exception):
    """Base class for all plotlayers errors."""


class ValidationError(PlotLayersError, ValueError):
    """Malformed request: bad coordinates, country, area or polygon."""


class ProviderUnavailable(PlotLayersError):
    """Upstream timeout, connection failure or 5xx."""


class ProviderSchemaMismatch(PlotLayersError):
    """Upstream answered but the payload has an unexpected shape."""


class RetryableTransient(PlotLayersError):
    """Rate limit or temporary upstream failure worth retrying with backoff."""


class FatalError(PlotLayersError):
    """Auth failure, malformed job or retry exhaustion. Recorded and skipped."""
