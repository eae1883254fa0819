"""Exception hierarchy for the audiobook relay."""


class RelayError(Exception):
    """Base exception for all relay errors."""


class ConfigError(RelayError, ValueError):
    """Invalid or missing configuration."""


class SourceUnavailable(RelayError):
    """An external source failed, timed out, or answered non-success."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source} unavailable: {reason}")
        self.source = source
        self.reason = reason


class ParseFailure(RelayError):
    """An upstream document (XML, HTML, JSON) could not be parsed."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source} parse failed: {reason}")
        self.source = source
        self.reason = reason


class InputValidationError(RelayError):
    """A request parameter is missing, malformed, or not allowed."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


class UpstreamRejection(RelayError):
    """The relay upstream answered with a status that is not OK or 206."""

    def __init__(self, status_code: int, url: str = "") -> None:
        super().__init__(f"upstream answered {status_code} for {url}")
        self.status_code = status_code
        self.url = url
