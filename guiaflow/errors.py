"""Exception types shared across GuiaFlow."""


class GuiaFlowError(Exception):
    """Base exception for GuiaFlow."""
    pass


class ConfigError(GuiaFlowError):
    """Required configuration (ids, credentials) is missing or invalid."""
    pass


class DistributionError(GuiaFlowError):
    """A distribution run could not start (e.g. clients root unreachable)."""
    pass


class RunInProgressError(GuiaFlowError):
    """Another run already holds the run guard."""

    def __init__(self, active_kind: str) -> None:
        super().__init__(f"A '{active_kind}' run is already in progress")
        self.active_kind = active_kind
