"""Tagged success/failure results for UI-facing call sites."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Generic, TypeVar, Union

from microfinder.errors import ErrorKind, MicroFinderError

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class Ok(Generic[T]):
    """Successful outcome carrying the produced value."""

    value: T
    ok = True


@dataclass(slots=True, frozen=True)
class Err:
    """Failed outcome carrying a branchable kind and a displayable message."""

    kind: ErrorKind
    message: str
    error: MicroFinderError
    ok = False


Result = Union[Ok[Any], Err]


async def attempt(awaitable: Awaitable[T]) -> Union[Ok[T], Err]:
    """Await ``awaitable`` and fold known failures into an :class:`Err`.

    Only :class:`MicroFinderError` is converted; anything else is a bug and
    propagates unchanged.
    """

    try:
        value = await awaitable
    except MicroFinderError as exc:
        return Err(kind=exc.kind, message=exc.message, error=exc)
    return Ok(value)
