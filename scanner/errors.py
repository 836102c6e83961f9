"""
Error taxonomy. Only ConfigurationError is fatal; the rest are recovered
per platform, per pair, or per opportunity.
"""


class ArbitrageError(Exception):
    """Base class for engine errors."""
    pass


class ProviderFetchError(ArbitrageError):
    """Platform unreachable, timed out, or returned an unparseable payload."""

    def __init__(self, platform: str, message: str) -> None:
        super().__init__(f"{platform}: {message}")
        self.platform = platform


class MatchingError(ArbitrageError):
    """Malformed market metadata. The pair is skipped, the batch continues."""
    pass


class CalculationError(ArbitrageError):
    """Missing or invalid price data. The opportunity is skipped."""
    pass


class ConfigurationError(ArbitrageError):
    """Contradictory or invalid configuration. Raised at startup only."""
    pass
