"""Exception hierarchy shared by the engine, the gateway and the store."""


class SpreadLabError(Exception):
    """Base class for all errors raised by this package."""


class DataUnavailable(SpreadLabError):
    """Candle or price data for an asset could not be obtained."""

    def __init__(self, asset: str, message: str = ""):
        self.asset = asset
        super().__init__(f"{asset}: {message}" if message else asset)


class GatewayError(SpreadLabError):
    """An order or account call against the venue failed."""


class PersistenceError(SpreadLabError):
    """A store transaction failed and was rolled back."""


class ConfigValidationError(SpreadLabError):
    """A configuration update was rejected; the previous config is kept."""

    def __init__(self, errors: list[dict]):
        self.errors = errors
        super().__init__(f"Invalid configuration: {errors}")
