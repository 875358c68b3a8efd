"""Failure taxonomy for the PiAPI task core.

Every failure raised by the request client or the task poller is a
``PiAPIError`` subclass, so callers can catch one type and still branch
on the specific cause.
"""

from __future__ import annotations

from typing import Any


class PiAPIError(Exception):
    """Structured PiAPI error with the attempted path and a retriable flag."""

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        status_code: int = 0,
        retriable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.path = path
        self.status_code = status_code
        self.retriable = retriable


class TransportError(PiAPIError):
    """Network failure reaching the remote host (DNS, timeout, reset)."""

    def __init__(self, message: str, *, path: str | None = None):
        super().__init__(message, path=path, retriable=True)


class HttpStatusError(PiAPIError):
    """Non-2xx HTTP response."""

    _RETRIABLE_STATUS = {408, 429, 500, 502, 503, 504}

    def __init__(self, status_code: int, body: Any, *, path: str | None = None):
        super().__init__(
            f"HTTP {status_code} from {path or 'PiAPI'}",
            path=path,
            status_code=status_code,
            retriable=status_code in self._RETRIABLE_STATUS,
        )
        self.body = body


class ApplicationError(PiAPIError):
    """Envelope ``code`` other than success, or a task the service reports as failed."""

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        code: int | None = None,
        data: Any = None,
    ):
        super().__init__(message, path=path, status_code=code or 0)
        self.code = code
        self.data = data


class TaskFailedError(ApplicationError):
    """The remote service moved the task to its failed state."""

    def __init__(self, task_id: str, message: str, *, path: str | None = None, data: Any = None):
        super().__init__(f"Task failed: {message}", path=path, data=data)
        self.task_id = task_id
        self.detail = message


class TaskTimeoutError(PiAPIError, TimeoutError):
    """The wait budget ran out before the task reached a terminal state.

    The task may still complete on the remote side; ``task_id`` is kept so
    the caller can look it up later.
    """

    def __init__(self, task_id: str, max_wait: float, attempts: int, last_status: str | None = None):
        super().__init__(
            f"Task {task_id} timed out after {max_wait:g}s ({attempts} polls)",
            path=None,
            retriable=True,
        )
        self.task_id = task_id
        self.max_wait = max_wait
        self.attempts = attempts
        self.last_status = last_status


class TaskCancelledError(PiAPIError):
    """The caller's cancellation signal fired while a task flow was suspended."""

    def __init__(self, task_id: str | None = None, *, path: str | None = None):
        target = f"task {task_id}" if task_id else "request"
        super().__init__(f"Cancelled while waiting on {target}", path=path)
        self.task_id = task_id
