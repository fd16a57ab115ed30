from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")
E = TypeVar("E")


class Result(Generic[T, E]):
    """
    Outcome of an operator command whose refusal is expected, not exceptional.

        r = monitor.apply_winner("B")
        if r.is_ok():
            ack = r.unwrap()
        else:
            reason = r.error
    """

    def is_ok(self) -> bool:
        raise NotImplementedError

    def is_err(self) -> bool:
        return not self.is_ok()

    def unwrap(self) -> T:
        raise NotImplementedError


@dataclass(frozen=True)
class Ok(Result[T, E]):
    value: T

    def is_ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err(Result[T, E]):
    error: E

    def is_ok(self) -> bool:
        return False

    def unwrap(self) -> T:
        if isinstance(self.error, BaseException):
            raise self.error
        raise ValueError(f"unwrap() on Err: {self.error!r}")
