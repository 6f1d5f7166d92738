"""Error taxonomy shared by the import, sync and request paths."""


class WorkbenchError(Exception):
    """Base class for all api-workbench errors."""


class ParseError(WorkbenchError):
    """The document is not JSON/YAML or does not describe any paths."""


class FetchError(WorkbenchError):
    """Fetching an OpenAPI document failed (network error or bad status)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransportError(WorkbenchError):
    """Executing a request failed before a response was received."""
