from __future__ import annotations

from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class OperatingSystem(Enum):
    LINUX = "linux"
    MACOS = "macos"
    UNSUPPORTED = "unsupported"

    @classmethod
    def from_system(cls, name: str) -> OperatingSystem:
        """Map a platform.system() style name to a supported OS."""
        normalized = name.strip().lower()
        if normalized == "linux":
            return cls.LINUX
        if normalized in ("darwin", "macos"):
            return cls.MACOS
        return cls.UNSUPPORTED

    @property
    def display_name(self) -> str:
        return {
            OperatingSystem.LINUX: "Linux",
            OperatingSystem.MACOS: "macOS",
            OperatingSystem.UNSUPPORTED: "Unsupported",
        }[self]


class StepStatus(Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class Result(Generic[T]):
    __slots__ = ("_value", "_error", "_is_ok")

    def __init__(self, value: T | None, error: Exception | None, is_ok: bool) -> None:
        self._value = value
        self._error = error
        self._is_ok = is_ok

    @staticmethod
    def ok(value: T) -> Result[T]:
        return Result(value, None, True)

    @staticmethod
    def err(error: Exception) -> Result[T]:
        return Result(None, error, False)

    def is_ok(self) -> bool:
        return self._is_ok

    def is_err(self) -> bool:
        return not self._is_ok

    def unwrap(self) -> T:
        if not self._is_ok:
            raise self._error if self._error else RuntimeError("Result is error but no error set")
        return self._value  # type: ignore

    def unwrap_err(self) -> Exception:
        if self._is_ok:
            raise RuntimeError("Called unwrap_err on Ok result")
        return self._error  # type: ignore
