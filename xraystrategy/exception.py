"""Formatting of errors and exceptions into trace exception records."""

from __future__ import annotations

import inspect
import os
import sys
import sysconfig
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from types import FrameType, TracebackType
from typing import Any

DEFAULT_ERROR_FRAME_COUNT = 32
MAX_ERROR_FRAME_COUNT = 32


@dataclass(frozen=True)
class StackFrame:
    """One frame of a recorded stack."""

    path: str = ""
    line: int = 0
    label: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the frame as a dict, leaving out empty fields."""
        out: dict[str, Any] = {}
        if self.path:
            out["path"] = self.path
        if self.line:
            out["line"] = self.line
        if self.label:
            out["label"] = self.label
        return out


@dataclass
class ExceptionRecord:
    """An exception as recorded in a trace."""

    id: str = ""
    type: str = ""
    message: str = ""
    stack: list[StackFrame] = field(default_factory=list)
    remote: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Return the record as a dict, leaving out empty fields."""
        out: dict[str, Any] = {}
        if self.id:
            out["id"] = self.id
        if self.type:
            out["type"] = self.type
        if self.message:
            out["message"] = self.message
        if self.stack:
            out["stack"] = [frame.to_dict() for frame in self.stack]
        if self.remote:
            out["remote"] = True
        return out


class MultiError(Exception):
    """Several errors reported together."""

    def __init__(self, errors: Iterable[BaseException] = ()) -> None:
        self.errors: list[BaseException] = list(errors)
        super().__init__(*self.errors)

    def append(self, err: BaseException) -> None:
        """Add another error."""
        self.errors.append(err)

    def __len__(self) -> int:
        return len(self.errors)

    def __str__(self) -> str:
        lines = [f"{len(self.errors)} errors occurred:\n"]
        lines.extend(f"* {err}\n" for err in self.errors)
        return "".join(lines)


class XRayError(Exception):
    """An error carrying its kind, message and the stack where it was made."""

    def __init__(
        self,
        message: str,
        type: str = "error",
        stack: list[StackFrame] | None = None,
    ) -> None:
        super().__init__(message)
        self.type = type
        self.message = message
        self.stack: list[StackFrame] = list(stack) if stack is not None else []

    def __str__(self) -> str:
        return self.message

    def stack_trace(self) -> list[StackFrame]:
        """Return the recorded stack, innermost frame first."""
        return self.stack


class FormattingStrategy(ABC):
    """Turns messages and errors into trace errors and exception records."""

    @abstractmethod
    def error(self, message: str) -> XRayError:
        """Return an error of kind "error" for ``message``."""

    @abstractmethod
    def errorf(self, format_string: str, *args: Any) -> XRayError:
        """Return an error of kind "error" with a formatted message."""

    @abstractmethod
    def panic(self, message: str) -> XRayError:
        """Return an error of kind "panic" for ``message``."""

    @abstractmethod
    def panicf(self, format_string: str, *args: Any) -> XRayError:
        """Return an error of kind "panic" with a formatted message."""

    @abstractmethod
    def exception_from_error(self, err: BaseException) -> ExceptionRecord:
        """Describe ``err`` as an exception record."""


def _source_roots() -> list[str]:
    roots = [os.getcwd()]
    roots.extend(
        value
        for key, value in sysconfig.get_paths().items()
        if key in ("purelib", "platlib", "stdlib", "platstdlib") and value
    )
    return roots


def _relative_path(filename: str) -> str:
    best = ""
    for entry in _source_roots():
        root = os.path.abspath(entry)
        prefix = root if root.endswith(os.sep) else root + os.sep
        if filename.startswith(prefix) and len(prefix) > len(best):
            best = prefix
    path = filename[len(best):] if best else filename
    return path.replace(os.sep, "/")


def _make_frame(frame: FrameType, line: int | None = None) -> StackFrame:
    code = frame.f_code
    return StackFrame(
        path=_relative_path(code.co_filename),
        line=line if line is not None else frame.f_lineno,
        label=code.co_name,
    )


def _walk(frame: FrameType | None, limit: int | None, first_line: int | None = None) -> list[StackFrame]:
    frames: list[StackFrame] = []
    line = first_line
    while frame is not None and (limit is None or len(frames) < limit):
        frames.append(_make_frame(frame, line))
        line = None
        frame = frame.f_back
    return frames


def _traceback_frames(tb: TracebackType | None) -> list[StackFrame]:
    """Frames of a traceback, innermost (raise site) first."""
    frames: list[StackFrame] = []
    while tb is not None:
        frames.append(_make_frame(tb.tb_frame, tb.tb_lineno))
        tb = tb.tb_next
    frames.reverse()
    return frames


def _chain(err: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = err
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__


def _type_name(err: BaseException) -> str:
    cls = type(err)
    if cls.__module__ == "builtins":
        return cls.__qualname__
    return f"{cls.__module__}.{cls.__qualname__}"


def _new_exception_id() -> str:
    return os.urandom(8).hex()


def _format(format_string: str, args: tuple[Any, ...]) -> str:
    return format_string % args if args else format_string


class DefaultFormattingStrategy(FormattingStrategy):
    """Default formatting strategy with a configurable number of stack frames."""

    def __init__(self, frame_count: int = DEFAULT_ERROR_FRAME_COUNT) -> None:
        if frame_count > MAX_ERROR_FRAME_COUNT or frame_count < 0:
            raise ValueError("frame_count must be a non-negative integer and less than 32")
        self.frame_count = frame_count

    def __repr__(self) -> str:
        return f"DefaultFormattingStrategy(frame_count={self.frame_count})"

    def _capture(self, depth: int) -> list[StackFrame]:
        """Capture the stack starting ``depth`` frames above the caller."""
        frame = inspect.currentframe()
        try:
            for _ in range(depth + 1):
                if frame is None:
                    break
                frame = frame.f_back
            return _walk(frame, self.frame_count)
        finally:
            del frame

    def error(self, message: str) -> XRayError:
        return XRayError(message, type="error", stack=self._capture(1))

    def errorf(self, format_string: str, *args: Any) -> XRayError:
        err = self.error(_format(format_string, args))
        err.stack = err.stack[1:]
        return err

    def panic(self, message: str) -> XRayError:
        """Record a panic; inside an exception handler the stack starts where it was raised."""
        tb = sys.exc_info()[2]
        if tb is None:
            return XRayError(message, type="panic", stack=self._capture(1))
        while tb.tb_next is not None:
            tb = tb.tb_next
        stack = _walk(tb.tb_frame, self.frame_count, tb.tb_lineno)
        return XRayError(message, type="panic", stack=stack)

    def panicf(self, format_string: str, *args: Any) -> XRayError:
        tb = sys.exc_info()[2]
        message = _format(format_string, args)
        if tb is None:
            return XRayError(message, type="panic", stack=self._capture(1))
        return self.panic(message)

    def exception_from_error(self, err: BaseException) -> ExceptionRecord:
        remote = False
        for cause in _chain(err):
            if hasattr(cause, "request_id"):
                remote = bool(cause.request_id)
                break

        record = ExceptionRecord(
            id=_new_exception_id(),
            type=_type_name(err),
            message=str(err),
            remote=remote,
        )

        for cause in _chain(err):
            if isinstance(cause, XRayError):
                record.type = cause.type
                break

        stack: list[StackFrame] | None = None
        for cause in _chain(err):
            tracer = getattr(cause, "stack_trace", None)
            if callable(tracer):
                stack = list(tracer())
                break

        if stack is None and err.__traceback__ is not None:
            stack = _traceback_frames(err.__traceback__)

        if stack is None:
            stack = self._capture(1)

        record.stack = stack
        return record