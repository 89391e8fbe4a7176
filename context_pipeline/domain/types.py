from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E", bound=BaseException)


@dataclass(frozen=True)
class Result(Generic[T, E]):
    ok: bool
    value: T | None = None
    error: E | None = None

    @staticmethod
    def success(v: T) -> Result[T, E]:
        return Result(ok=True, value=v)

    @staticmethod
    def failure(e: E) -> Result[T, E]:
        return Result(ok=False, error=e)


# ---- Stage results --------------------------------------------------------
# A pipeline stage either succeeds, succeeds with a fallback value, or halts.


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Degraded(Generic[T]):
    """Stage produced its documented fallback value instead of the real one."""

    value: T
    reason: str
    error: BaseException | None = None


@dataclass(frozen=True)
class Fatal:
    """Stage cannot produce any usable value; the pipeline must stop."""

    error: BaseException
    reason: str = ""


StageResult = Union[Ok[T], Degraded[T], Fatal]


def bind(result: StageResult[T], step: Callable[[T], StageResult[U]]) -> StageResult[U]:
    """Feed the value of ``result`` into ``step``.

    Proceeds on both ``Ok`` and ``Degraded``; only ``Fatal`` short-circuits.
    A degradation upstream is carried forward if ``step`` itself succeeds.

    Examples:
        >>> bind(Ok(2), lambda v: Ok(v * 2))
        Ok(value=4)
        >>> bind(Degraded(2, "fallback"), lambda v: Ok(v * 2))
        Degraded(value=4, reason='fallback', error=None)
    """
    if isinstance(result, Fatal):
        return result
    nxt = step(result.value)
    if isinstance(result, Degraded) and isinstance(nxt, Ok):
        return Degraded(nxt.value, result.reason, result.error)
    return nxt


def value_or(result: StageResult[T], default: T) -> T:
    if isinstance(result, Fatal):
        return default
    return result.value


def is_degraded(result: StageResult[T]) -> bool:
    return isinstance(result, Degraded)
