"""Ok/Err values returned by the compilation stages.

A stage that can fail in several places at once (a document with three bad
transitions, a graph with two unreachable states) returns ``Err`` with the
whole list of diagnostics rather than raising on the first one. The compiler
turns the first failing stage into a ``CompilationError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, Iterable, NoReturn, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")
U = TypeVar("U")


class ResultError(Exception):
    """Raised when the wrong side of a Result is unwrapped."""

    pass


@dataclass(frozen=True)
class Ok(Generic[T]):
    """A stage that produced its value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def unwrap_err(self) -> NoReturn:
        raise ResultError(f"expected a failed stage, got {self.value!r}")

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        return Ok(fn(self.value))

    def and_then(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Feed the value into the next stage."""
        return fn(self.value)


@dataclass(frozen=True)
class Err(Generic[E]):
    """A stage that failed; ``error`` is usually a list of diagnostics."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> NoReturn:
        raise ResultError(f"stage failed: {self.error}")

    def unwrap_or(self, default: T) -> T:
        return default

    def unwrap_err(self) -> E:
        return self.error

    def map(self, fn: Callable[[T], U]) -> Err[E]:
        return self

    def and_then(self, fn: Callable[[T], Result[U, E]]) -> Err[E]:
        """Later stages never run after a failure."""
        return self


Result = Union[Ok[T], Err[E]]


@dataclass(frozen=True)
class ConfigError:
    """A bad value in the configuration file or environment."""

    field: str
    message: str

    def __str__(self) -> str:
        return f"Config error in '{self.field}': {self.message}"


class ExitCode:
    """Process exit codes, one per failing compilation phase."""

    SUCCESS = 0
    GENERAL_ERROR = 1

    CONFIG_ERROR = 10

    EXTRACTION_FAILED = 20
    RESOLUTION_FAILED = 21
    VALIDATION_FAILED = 22
    EMISSION_FAILED = 23


def collect_results(results: Iterable[Result[T, list[E]]]) -> Result[list[T], list[E]]:
    """
    Merge per-item results into one.

    Returns Ok with every value when nothing failed, otherwise Err with the
    errors of all failed items, flattened in input order.
    """
    values: list[T] = []
    errors: list[E] = []

    for result in results:
        if result.is_ok():
            values.append(result.unwrap())
        else:
            errors.extend(result.unwrap_err())

    return Err(errors) if errors else Ok(values)
