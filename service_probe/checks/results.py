from __future__ import annotations

import errno
import socket
from typing import Optional

OK = "OK"


def _errno_code(exc: BaseException) -> Optional[str]:
    """Walk a requests/urllib3 exception chain looking for the socket error."""
    pending: list[object] = [exc]
    seen: set[int] = set()
    while pending:
        current = pending.pop(0)
        if not isinstance(current, BaseException) or id(current) in seen:
            continue
        seen.add(id(current))
        if isinstance(current, socket.gaierror):
            return "ENOTFOUND"
        if isinstance(current, OSError) and current.errno in errno.errorcode:
            return errno.errorcode[current.errno]
        pending.extend(current.args)
        pending.append(getattr(current, "reason", None))
        pending.append(current.__cause__)
        pending.append(current.__context__)
    return None


class ProbeError(Exception):
    def __init__(self, name: str, message: str) -> None:
        super().__init__(message)
        self.name = name


class UnhealthyStatus(ProbeError):
    """The target answered, but not with HTTP 200."""

    def __init__(self, name: str, status_code: int) -> None:
        super().__init__(name, f"{name} returned HTTP {status_code}")
        self.status_code = status_code


class TransportError(ProbeError):
    """The target could not be reached; ``error`` is the underlying exception."""

    def __init__(
        self,
        name: str,
        error: BaseException,
        code: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        self.error = error
        self.code = code or _errno_code(error) or type(error).__name__
        self.message = message or str(error) or type(error).__name__
        self.__cause__ = error
        super().__init__(name, f"{name}: {self.code} {self.message}")


class ProbeTimeout(TransportError):
    pass
