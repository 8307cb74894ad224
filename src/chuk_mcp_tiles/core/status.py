"""
Status, result and cancellation types shared by the compositing core.

A ``Result`` with no value and an OK status means "no data here", which is
an expected outcome rather than a fault. Failures carry a non-OK ``Status``.
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class StatusCode(str, Enum):
    OK = "ok"
    RESOURCE_UNAVAILABLE = "resource_unavailable"
    SERVICE_UNAVAILABLE = "service_unavailable"
    CONFIGURATION_ERROR = "configuration_error"
    GENERAL_ERROR = "general_error"


@dataclass(frozen=True)
class Status:
    """Outcome of an operation: a code plus an optional message."""

    code: StatusCode = StatusCode.OK
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.code == StatusCode.OK

    @property
    def failed(self) -> bool:
        return not self.ok

    def __str__(self) -> str:
        if self.message:
            return f"{self.code.value}: {self.message}"
        return self.code.value


STATUS_OK = Status()


@dataclass
class Result(Generic[T]):
    """A value paired with the status of the operation that produced it."""

    value: T | None = None
    status: Status = field(default=STATUS_OK)

    @property
    def ok(self) -> bool:
        return self.status.ok

    @property
    def failed(self) -> bool:
        return self.status.failed

    @property
    def valid(self) -> bool:
        """True when the operation succeeded and produced data."""
        if not self.ok or self.value is None:
            return False
        return bool(getattr(self.value, "valid", True))

    @classmethod
    def empty(cls) -> "Result[Any]":
        return cls()

    @classmethod
    def error(cls, code: StatusCode, message: str = "") -> "Result[Any]":
        return cls(status=Status(code, message))

    @classmethod
    def from_status(cls, status: Status) -> "Result[Any]":
        return cls(status=status)


class IOOptions:
    """Cancellation-checkable context passed through every entry point."""

    def __init__(
        self,
        cancel_event: threading.Event | None = None,
        progress_callback: Callable[[str], None] | None = None,
    ) -> None:
        self._cancel_event = cancel_event or threading.Event()
        self.progress_callback = progress_callback

    def canceled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        self._cancel_event.set()

    def report(self, message: str) -> None:
        if self.progress_callback is not None:
            self.progress_callback(message)
