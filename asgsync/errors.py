from __future__ import annotations


class ConfigError(Exception):
    """Invalid configuration. Raised once at startup; the process must not start."""


class ProviderError(Exception):
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    AGGREGATED = "aggregated"

    def __init__(self, message: str, kind: str = TRANSIENT, errors: list[str] | None = None):
        super().__init__(message)
        self.kind = kind
        self.errors = list(errors or [])

    @property
    def is_not_found(self) -> bool:
        return self.kind == self.NOT_FOUND

    @property
    def is_transient(self) -> bool:
        # Aggregated failures are retried on the next tick like any other API failure.
        return self.kind in {self.TRANSIENT, self.AGGREGATED}


class GatewayError(Exception):
    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
