"""Domain exceptions raised by the signal hub services and stores."""


class SignalHubError(Exception):
    """Base class for every error raised deliberately by this backend."""


class PriceProviderError(SignalHubError):
    """An upstream price source failed or answered with unusable data."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class UnsupportedSymbolError(SignalHubError):
    """A price was requested for an asset outside the configured symbol set."""

    def __init__(self, symbol: str):
        self.symbol = symbol
        super().__init__(f"Unsupported price symbol: {symbol!r}")


class NotFoundError(SignalHubError):
    def __init__(self, entity: str, key: object):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class InvalidInputError(SignalHubError):
    pass


class ConflictError(SignalHubError):
    pass


class NotAuthorizedError(SignalHubError):
    """The caller's wallet does not own the entity it tried to modify."""
