"""Exceptions raised while querying and rendering results."""

import json


class PromQueryError(Exception):
    """Base class for all promquery failures."""


class ConfigError(PromQueryError):
    """Raised when the configuration or command-line arguments are invalid."""


class TransportError(PromQueryError):
    """Raised when the request could not be completed (DNS, connect, timeout, HTTP status)."""


class ResponseDecodeError(PromQueryError):
    """Raised when a response body does not match the expected envelope or shape."""

    def __init__(self, message: str, field: str | None = None, fragment=None):
        self.message = message
        self.field = field
        self.fragment = fragment
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.field is not None:
            parts.append(f"field '{self.field}'")
        if self.fragment is not None:
            parts.append(f"got {_truncate(self.fragment)}")
        return ": ".join(parts)


class UnknownResponseTypeError(ResponseDecodeError):
    """Raised when the envelope carries a type tag we cannot (or may not) decode."""

    def __init__(self, type_tag: str, expected: str | None = None):
        self.type_tag = type_tag
        self.expected = expected
        if expected:
            message = f"unexpected response type '{type_tag}' (expected {expected})"
        else:
            message = f"unrecognized response type '{type_tag}'"
        super().__init__(message, field="type")


class QueryError(PromQueryError):
    """Raised when the server answers with an error envelope."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class OutputFormatError(PromQueryError):
    """Raised when a result cannot be rendered in the requested format."""


def _truncate(fragment, limit: int = 200) -> str:
    if isinstance(fragment, bytes):
        text = fragment.decode("utf-8", errors="replace")
    elif isinstance(fragment, str):
        text = fragment
    else:
        text = json.dumps(fragment, default=str)
    if len(text) > limit:
        text = text[:limit] + "..."
    return text
