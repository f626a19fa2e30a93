"""Flux query construction.

All caller-supplied values go through escape_string() or format_time() before
they reach a query; column names and durations are checked against strict
patterns. Nothing here accepts a pre-formatted Flux fragment.
"""
import re
from datetime import datetime
from typing import List, Optional

from streamdash.core.exceptions import InvalidTimeRange

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
DURATION_RE = re.compile(r"^(\d+(ns|us|ms|mo|s|m|h|d|w|y))+$")
RELATIVE_TIME_RE = re.compile(r"^-(\d+(ns|us|ms|mo|s|m|h|d|w|y))+$")
# time(v:) only parses full RFC3339 timestamps with an explicit offset
RFC3339_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})$")


def escape_string(value: str) -> str:
    """Escape a value for use inside a double-quoted Flux string literal"""
    return (
        str(value)
        .replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("${", "\\${")
    )


def format_time(value: str) -> str:
    """Render a range bound.

    RFC3339 instants with seconds and an offset (2024-01-01T00:00:00Z) become
    time(v: "..."); Flux relative expressions such as -7d and now() pass
    through unchanged.
    """
    value = (value or "").strip()
    if "T" in value:
        if not RFC3339_RE.match(value):
            raise InvalidTimeRange(
                f"Invalid RFC3339 time: {value!r}",
                detail="Expected YYYY-MM-DDTHH:MM:SS with Z or a +HH:MM offset",
            )
        try:
            datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise InvalidTimeRange(f"Invalid RFC3339 time: {value!r}")
        return f'time(v: "{escape_string(value)}")'
    if value == "now()" or RELATIVE_TIME_RE.match(value):
        return value
    raise InvalidTimeRange(f"Unsupported time expression: {value!r}")


def _column(name: str) -> str:
    if not IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid Flux column name: {name!r}")
    return name


class FluxQuery:
    """Chainable builder for a single from() |> ... pipeline"""

    def __init__(self, bucket: str):
        self.stages: List[str] = [f'from(bucket: "{escape_string(bucket)}")']

    def _pipe(self, stage: str) -> "FluxQuery":
        self.stages.append(stage)
        return self

    def range(self, start: str, stop: str) -> "FluxQuery":
        return self._pipe(f"range(start: {format_time(start)}, stop: {format_time(stop)})")

    def measurement(self, name: str) -> "FluxQuery":
        return self._pipe(f'filter(fn: (r) => r._measurement == "{escape_string(name)}")')

    def where(self, column: str, value: str) -> "FluxQuery":
        """Equality predicate on a tag column"""
        return self._pipe(f'filter(fn: (r) => r.{_column(column)} == "{escape_string(value)}")')

    def fields(self, *names: str) -> "FluxQuery":
        predicate = " or ".join(f'r._field == "{escape_string(n)}"' for n in names)
        return self._pipe(f"filter(fn: (r) => {predicate})")

    def aggregate_window(self, every: str, fn: str = "mean") -> "FluxQuery":
        if not DURATION_RE.match(every):
            raise ValueError(f"Invalid Flux duration: {every!r}")
        # timeSrc _start stamps each row with its window start
        return self._pipe(
            f'aggregateWindow(every: {every}, fn: {_column(fn)}, createEmpty: false, timeSrc: "_start")'
        )

    def pivot(self) -> "FluxQuery":
        return self._pipe('pivot(rowKey: ["_time"], columnKey: ["_field"], valueColumn: "_value")')

    def group(self, columns: Optional[List[str]] = None) -> "FluxQuery":
        if not columns:
            return self._pipe("group()")
        cols = ", ".join(f'"{_column(c)}"' for c in columns)
        return self._pipe(f"group(columns: [{cols}])")

    def with_total(self, *fields: str) -> "FluxQuery":
        """Add a synthetic 'total' column; missing fields count as 0.0"""
        terms = " + ".join(
            f"(if exists r.{_column(f)} then float(v: r.{f}) else 0.0)" for f in fields
        )
        return self._pipe(f"map(fn: (r) => ({{r with total: {terms}}}))")

    def sort(self, column: str, desc: bool = False) -> "FluxQuery":
        return self._pipe(f'sort(columns: ["{_column(column)}"], desc: {"true" if desc else "false"})')

    def limit(self, n: int, offset: int = 0) -> "FluxQuery":
        return self._pipe(f"limit(n: {int(n)}, offset: {int(offset)})")

    def distinct(self, column: str) -> "FluxQuery":
        return self._pipe(f'distinct(column: "{_column(column)}")')

    def keep(self, *columns: str) -> "FluxQuery":
        cols = ", ".join(f'"{_column(c)}"' for c in columns)
        return self._pipe(f"keep(columns: [{cols}])")

    def count(self, column: str = "_value") -> "FluxQuery":
        return self._pipe(f'count(column: "{_column(column)}")')

    def render(self) -> str:
        return "\n  |> ".join(self.stages)

    def __str__(self) -> str:
        return self.render()
