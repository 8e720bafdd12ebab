from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Parsed(Generic[T]):
    """The model's output parsed into the expected structure."""

    value: T

    @property
    def is_fallback(self) -> bool:
        return False


@dataclass(frozen=True)
class Fallback(Generic[T]):
    """A placeholder substituted because the model's output could not be used."""

    value: T
    reason: str

    @property
    def is_fallback(self) -> bool:
        return True


Outcome = Union[Parsed[T], Fallback[T]]


@dataclass(frozen=True)
class StageOk(Generic[T]):
    value: T


@dataclass(frozen=True)
class StageError:
    stage: str
    message: str


StageResult = Union[StageOk[T], StageError]
