"""Client-directed log messages.

A service implementation can send diagnostics back to the caller while a
call is in flight. Each message travels as a zero-row batch whose custom
metadata carries the level, the text and a JSON blob of extra fields. The
server also uses the EXCEPTION level to report a failed call.

    ctx.client_log(Level.INFO, "greeting prepared", name="World")
    Message.from_exception(exc)
"""

from __future__ import annotations

import json
import traceback
from enum import Enum
from typing import ClassVar

from hello_rpc.metadata import LOG_EXTRA_KEY, LOG_LEVEL_KEY, LOG_MESSAGE_KEY

__all__ = [
    "Level",
    "Message",
]


class Level(Enum):
    """Severity of a client-directed message, most severe first.

    Attributes:
        EXCEPTION: The call failed; the client raises ``CallError``.
        ERROR: Something went wrong but a result still follows.
        WARN: Worth a look, not necessarily wrong.
        INFO: Progress information.
        DEBUG: Detail useful while debugging.
        TRACE: Very fine-grained detail.

    """

    EXCEPTION = "EXCEPTION"
    ERROR = "ERROR"
    WARN = "WARN"
    INFO = "INFO"
    DEBUG = "DEBUG"
    TRACE = "TRACE"


class Message:
    """A log message sent from a service implementation to its caller.

    Attributes:
        level: Severity of the message.
        message: Human-readable text.
        extra: Extra key/value pairs serialised as JSON, or ``None``.

    """

    __slots__ = ("extra", "level", "message")
    __hash__ = None  # type: ignore[assignment]

    _MAX_TRACEBACK_CHARS: ClassVar[int] = 16_000
    _MAX_TRACEBACK_FRAMES: ClassVar[int] = 5

    def __init__(self, level: Level, message: str, **kwargs: object) -> None:
        """Create a message; keyword arguments become ``extra``."""
        self.level = level
        self.message = message
        self.extra: dict[str, object] | None = kwargs if kwargs else None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Message):
            return NotImplemented
        return self.level == other.level and self.message == other.message and self.extra == other.extra

    def __repr__(self) -> str:
        if self.extra:
            return f"Message({self.level!r}, {self.message!r}, **{self.extra!r})"
        return f"Message({self.level!r}, {self.message!r})"

    @classmethod
    def exception(cls, message: str, **kwargs: object) -> Message:
        """Create an EXCEPTION level message."""
        return cls(Level.EXCEPTION, message, **kwargs)

    @classmethod
    def error(cls, message: str, **kwargs: object) -> Message:
        """Create an ERROR level message."""
        return cls(Level.ERROR, message, **kwargs)

    @classmethod
    def warn(cls, message: str, **kwargs: object) -> Message:
        """Create a WARN level message."""
        return cls(Level.WARN, message, **kwargs)

    @classmethod
    def info(cls, message: str, **kwargs: object) -> Message:
        """Create an INFO level message."""
        return cls(Level.INFO, message, **kwargs)

    @classmethod
    def debug(cls, message: str, **kwargs: object) -> Message:
        """Create a DEBUG level message."""
        return cls(Level.DEBUG, message, **kwargs)

    @classmethod
    def trace(cls, message: str, **kwargs: object) -> Message:
        """Create a TRACE level message."""
        return cls(Level.TRACE, message, **kwargs)

    def add_to_metadata(self, metadata: dict[str, str] | None = None) -> dict[str, str]:
        """Return a copy of *metadata* with the log keys added.

        The input is not mutated. ``hello_rpc.log_extra`` is omitted when the
        message has no extra fields.
        """
        result = dict(metadata) if metadata else {}
        result[LOG_LEVEL_KEY.decode()] = self.level.value
        result[LOG_MESSAGE_KEY.decode()] = self.message
        if self.extra:
            result[LOG_EXTRA_KEY.decode()] = json.dumps(self.extra)
        return result

    @classmethod
    def from_exception(cls, exc: BaseException) -> Message:
        """Build an EXCEPTION message carrying the formatted traceback of *exc*."""
        tb_exc = traceback.TracebackException.from_exception(exc, capture_locals=False)

        formatted_tb = cls._truncate("".join(tb_exc.format()))
        extra: dict[str, object] = {
            "exception_type": type(exc).__name__,
            "exception_message": str(exc),
            "traceback": formatted_tb,
        }
        if tb_exc.__cause__:
            extra["cause"] = cls._truncate("".join(tb_exc.__cause__.format()))
        extra["frames"] = [
            {"file": f.filename, "line": f.lineno, "function": f.name, "code": f.line}
            for f in tb_exc.stack[-cls._MAX_TRACEBACK_FRAMES :]
        ]
        return cls(Level.EXCEPTION, f"{type(exc).__name__}: {exc}", **extra)

    @classmethod
    def _truncate(cls, text: str) -> str:
        if len(text) > cls._MAX_TRACEBACK_CHARS:
            return text[: cls._MAX_TRACEBACK_CHARS] + "\n... <traceback truncated>"
        return text
