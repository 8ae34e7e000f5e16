"""Render decoded query results as plain text or CSV."""

import csv
import io

from promquery.errors import OutputFormatError
from promquery.response import Matrix, QueryResult, Scalar, Vector, format_timestamp

OUTPUT_FORMATS = ("csv", "text")


def validate_delimiter(delimiter: str) -> str:
    """Check that ``delimiter`` is a single character usable as a CSV separator."""
    if not isinstance(delimiter, str) or len(delimiter) != 1:
        raise OutputFormatError("CSV delimiter may be a single character only")
    if delimiter in ('"', "\r", "\n"):
        raise OutputFormatError(f"CSV delimiter may not be {delimiter!r}")
    return delimiter


def format_text(result: QueryResult) -> str:
    """Format a result as one line per data point (scalar) or per series."""
    if isinstance(result, Scalar):
        return f"{result.value}\n"
    if isinstance(result, Vector):
        return "".join(f"{e.metric} {e.sample}\n" for e in result.elements)
    if isinstance(result, Matrix):
        lines = []
        for s in result.series:
            lines.append(" ".join([str(s.metric), *(str(sample) for sample in s.samples)]))
        return "".join(f"{line}\n" for line in lines)
    raise OutputFormatError(f"cannot format result of type {type(result).__name__}")


def _csv_rows(result: QueryResult) -> list[list[str]]:
    if isinstance(result, Scalar):
        return [[result.value]]
    if isinstance(result, Vector):
        return [
            [str(e.metric), e.sample.value, format_timestamp(e.sample.timestamp)]
            for e in result.elements
        ]
    if isinstance(result, Matrix):
        return [
            [str(s.metric), " ".join(str(sample) for sample in s.samples)]
            for s in result.series
        ]
    raise OutputFormatError(f"cannot format result of type {type(result).__name__}")


def format_csv(result: QueryResult, delimiter: str = ";") -> str:
    """Format a result as CSV rows separated by ``delimiter``.

    Fields containing the delimiter, quotes or newlines are quoted, so the output
    parses back into the same fields with any standard CSV reader.
    """
    validate_delimiter(delimiter)
    buf = io.StringIO()
    writer = csv.writer(buf, delimiter=delimiter, lineterminator="\n")
    try:
        writer.writerows(_csv_rows(result))
    except csv.Error as e:
        raise OutputFormatError(f"error formatting CSV: {e}") from e
    return buf.getvalue()


def format_result(result: QueryResult, output_format: str = "csv", delimiter: str = ";") -> str:
    if output_format == "csv":
        return format_csv(result, delimiter)
    if output_format == "text":
        return format_text(result)
    raise OutputFormatError(f"unknown output format '{output_format}'")


def format_metric_names(names: list[str]) -> str:
    return "".join(f"{name}\n" for name in names)
