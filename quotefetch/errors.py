class QuoteFetchError(RuntimeError):
    """Base class for quote download failures reported to consumers."""


class InvalidSymbolError(QuoteFetchError):
    pass


class QuotaExceededError(QuoteFetchError):
    """Provider answered with an in-band quota note instead of data."""


class QuoteSchemaError(QuoteFetchError):
    """Response lacks the expected top-level container."""


class QuoteParseError(QuoteFetchError):
    pass


class ProviderError(QuoteFetchError):
    pass
