"""Decode query API responses into typed scalar, vector and matrix results.

A response body is an envelope ``{"type": ..., "value": ...}``. The envelope is
decoded first; the type tag then selects exactly one shape decoder for the value
payload. Samples arrive either as flat ``value``/``timestamp`` fields or as a nested
``[timestamp, value]`` pair, and both end up as the same ``Sample``.

Numbers are parsed with ``Decimal`` so integer and fractional epoch timestamps keep
every digit the server sent. Sample values stay as the text the server sent.
"""

import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Union

from promquery.errors import QueryError, ResponseDecodeError, UnknownResponseTypeError

log = logging.getLogger("promquery.response")

SCALAR_TYPE = "scalar"
VECTOR_TYPE = "vector"
MATRIX_TYPE = "matrix"
ERROR_TYPE = "error"

METRIC_NAME_LABEL = "__name__"

_LABEL_PAIR = re.compile(r'\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*=\s*"((?:[^"\\]|\\.)*)"\s*')
_ESCAPE_SEQUENCE = re.compile(r"\\(.)")
_SAMPLE_VALUE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?|[+-]?Inf|NaN", re.ASCII)


def _escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _unescape_label_value(value: str) -> str:
    return _ESCAPE_SEQUENCE.sub(lambda m: "\n" if m.group(1) == "n" else m.group(1), value)


class Metric(Mapping):
    """Immutable label set identifying one time series."""

    def __init__(self, labels: Mapping[str, str] | None = None):
        self._labels = dict(labels or {})
        # An empty metric name is the same as no name.
        if self._labels.get(METRIC_NAME_LABEL) == "":
            del self._labels[METRIC_NAME_LABEL]

    def __getitem__(self, key: str) -> str:
        return self._labels[key]

    def __iter__(self):
        return iter(self._labels)

    def __len__(self) -> int:
        return len(self._labels)

    def __hash__(self) -> int:
        return hash(frozenset(self._labels.items()))

    def __repr__(self) -> str:
        return f"Metric({self._labels!r})"

    def __str__(self) -> str:
        name = self._labels.get(METRIC_NAME_LABEL, "")
        pairs = [
            f'{k}="{_escape_label_value(v)}"'
            for k, v in sorted(self._labels.items())
            if k != METRIC_NAME_LABEL
        ]
        if name and not pairs:
            return name
        return f"{name}{{{', '.join(pairs)}}}"

    @classmethod
    def parse(cls, text: str) -> "Metric":
        """Parse the string form produced by ``str(metric)`` back into a Metric."""
        text = text.strip()
        brace = text.find("{")
        if brace == -1:
            if not text:
                raise ValueError("empty label set string")
            return cls({METRIC_NAME_LABEL: text})
        if not text.endswith("}"):
            raise ValueError(f"label set string must end with '}}': {text!r}")

        labels = {}
        name = text[:brace].strip()
        if name:
            labels[METRIC_NAME_LABEL] = name
        body = text[brace + 1:-1]
        pos = 0
        while pos < len(body) and body[pos:].strip():
            m = _LABEL_PAIR.match(body, pos)
            if not m:
                raise ValueError(f"malformed label pair at offset {pos}: {text!r}")
            labels[m.group(1)] = _unescape_label_value(m.group(2))
            pos = m.end()
            if pos < len(body):
                if body[pos] != ",":
                    raise ValueError(f"expected ',' at offset {pos}: {text!r}")
                pos += 1
        return cls(labels)


def format_timestamp(ts: Decimal) -> str:
    return format(ts, "f")


@dataclass(frozen=True)
class Sample:
    value: str
    timestamp: Decimal

    def __str__(self) -> str:
        return f"{self.value}@{format_timestamp(self.timestamp)}"


@dataclass(frozen=True)
class Scalar:
    value: str
    timestamp: Decimal | None = None


@dataclass(frozen=True)
class VectorElement:
    metric: Metric
    sample: Sample


@dataclass(frozen=True)
class Vector:
    elements: tuple[VectorElement, ...] = ()


@dataclass(frozen=True)
class MatrixSeries:
    metric: Metric
    samples: tuple[Sample, ...] = ()


@dataclass(frozen=True)
class Matrix:
    series: tuple[MatrixSeries, ...] = ()


QueryResult = Union[Scalar, Vector, Matrix]


@dataclass(frozen=True)
class Envelope:
    """Type tag plus the still-undecoded value payload."""
    type: str
    value: Any
    version: int | None = None


def _load_json(body: bytes | str) -> Any:
    try:
        return json.loads(body, parse_float=Decimal)
    except ValueError as e:
        raise ResponseDecodeError(f"response body is not valid JSON ({e})", fragment=body) from e


def decode_envelope(body: bytes | str) -> Envelope:
    """Decode only the type tag and the opaque value of a response body."""
    raw = _load_json(body)
    if not isinstance(raw, dict):
        raise ResponseDecodeError("response envelope must be a JSON object", fragment=raw)
    if "type" not in raw:
        raise ResponseDecodeError("missing required field", field="type", fragment=raw)
    if not isinstance(raw["type"], str):
        raise ResponseDecodeError("type tag must be a string", field="type", fragment=raw["type"])
    if "value" not in raw:
        raise ResponseDecodeError("missing required field", field="value", fragment=raw)
    version = raw.get("version")
    if version is not None and (isinstance(version, bool) or not isinstance(version, int)):
        raise ResponseDecodeError("version must be an integer", field="version", fragment=version)
    return Envelope(type=raw["type"], value=raw["value"], version=version)


def _require(obj: dict, key: str, path: str) -> Any:
    if key not in obj:
        raise ResponseDecodeError("missing required field", field=f"{path}.{key}", fragment=obj)
    return obj[key]


def _decode_value(raw: Any, path: str) -> str:
    if isinstance(raw, bool):
        raise ResponseDecodeError("sample value must be numeric text", field=path, fragment=raw)
    if isinstance(raw, int):
        return str(raw)
    if isinstance(raw, Decimal):
        return format(raw, "f")
    if not isinstance(raw, str):
        raise ResponseDecodeError("sample value must be numeric text", field=path, fragment=raw)
    if not _SAMPLE_VALUE.fullmatch(raw):
        raise ResponseDecodeError("sample value is not a number", field=path, fragment=raw)
    return raw


def _decode_timestamp(raw: Any, path: str) -> Decimal:
    if isinstance(raw, bool) or not isinstance(raw, (int, Decimal)):
        raise ResponseDecodeError("timestamp must be a number", field=path, fragment=raw)
    ts = Decimal(raw)
    if not ts.is_finite():
        raise ResponseDecodeError("timestamp must be finite", field=path, fragment=str(raw))
    return ts


def _decode_sample(raw: Any, path: str) -> Sample:
    """Decode a ``[timestamp, value]`` pair or a ``{"value", "timestamp"}`` object."""
    if isinstance(raw, list):
        if len(raw) != 2:
            raise ResponseDecodeError("sample must be a [timestamp, value] pair", field=path, fragment=raw)
        ts, value = raw
        return Sample(
            value=_decode_value(value, f"{path}[1]"),
            timestamp=_decode_timestamp(ts, f"{path}[0]"),
        )
    if isinstance(raw, dict):
        return Sample(
            value=_decode_value(_require(raw, "value", path), f"{path}.value"),
            timestamp=_decode_timestamp(_require(raw, "timestamp", path), f"{path}.timestamp"),
        )
    raise ResponseDecodeError("sample must be a pair or an object", field=path, fragment=raw)


def _decode_metric(raw: Any, path: str) -> Metric:
    if not isinstance(raw, dict):
        raise ResponseDecodeError("label set must be an object", field=path, fragment=raw)
    for name, value in raw.items():
        if not isinstance(value, str):
            raise ResponseDecodeError("label value must be a string", field=f"{path}.{name}", fragment=value)
    return Metric(raw)


def _decode_list(raw: Any, path: str) -> list:
    if not isinstance(raw, list):
        raise ResponseDecodeError("expected a list", field=path, fragment=raw)
    return raw


def _decode_object(raw: Any, path: str) -> dict:
    if not isinstance(raw, dict):
        raise ResponseDecodeError("expected an object", field=path, fragment=raw)
    return raw


def decode_scalar(value: Any) -> Scalar:
    if isinstance(value, list):
        sample = _decode_sample(value, "value")
        return Scalar(value=sample.value, timestamp=sample.timestamp)
    return Scalar(value=_decode_value(value, "value"))


def decode_vector(value: Any) -> Vector:
    elements = []
    for i, item in enumerate(_decode_list(value, "value")):
        path = f"value[{i}]"
        item = _decode_object(item, path)
        metric = _decode_metric(_require(item, "metric", path), f"{path}.metric")
        raw_value = _require(item, "value", path)
        if isinstance(raw_value, list):
            sample = _decode_sample(raw_value, f"{path}.value")
        else:
            sample = _decode_sample(item, path)
        elements.append(VectorElement(metric=metric, sample=sample))
    return Vector(elements=tuple(elements))


def decode_matrix(value: Any) -> Matrix:
    series = []
    for i, item in enumerate(_decode_list(value, "value")):
        path = f"value[{i}]"
        item = _decode_object(item, path)
        metric = _decode_metric(_require(item, "metric", path), f"{path}.metric")
        raw_samples = _decode_list(_require(item, "values", path), f"{path}.values")
        samples = tuple(
            _decode_sample(s, f"{path}.values[{j}]") for j, s in enumerate(raw_samples)
        )
        series.append(MatrixSeries(metric=metric, samples=samples))
    return Matrix(series=tuple(series))


_DECODERS = {
    SCALAR_TYPE: decode_scalar,
    VECTOR_TYPE: decode_vector,
    MATRIX_TYPE: decode_matrix,
}


def decode_query_response(body: bytes | str, allowed: tuple[str, ...] | None = None) -> QueryResult:
    """Decode a query response body into a Scalar, Vector or Matrix.

    Args:
        body: Raw response bytes.
        allowed: Type tags the caller accepts; None accepts every known shape.

    Raises:
        QueryError: The server answered with an error envelope.
        UnknownResponseTypeError: The tag is unknown or not in ``allowed``.
        ResponseDecodeError: The payload does not match the shape its tag names.
    """
    envelope = decode_envelope(body)
    if envelope.type == ERROR_TYPE:
        if not isinstance(envelope.value, str):
            raise ResponseDecodeError("error message must be a string", field="value", fragment=envelope.value)
        raise QueryError(envelope.value)

    decoder = _DECODERS.get(envelope.type)
    if decoder is None:
        raise UnknownResponseTypeError(envelope.type)
    if allowed is not None and envelope.type not in allowed:
        raise UnknownResponseTypeError(envelope.type, expected=" or ".join(allowed))

    result = decoder(envelope.value)
    log.debug("Decoded %s response (version=%s)", envelope.type, envelope.version)
    return result


def decode_metric_names(body: bytes | str) -> list[str]:
    """Decode a metric listing: a plain JSON list of metric names."""
    names = _decode_list(_load_json(body), "$")
    for i, name in enumerate(names):
        if not isinstance(name, str):
            raise ResponseDecodeError("metric name must be a string", field=f"$[{i}]", fragment=name)
    return names
