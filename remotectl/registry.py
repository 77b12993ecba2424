"""Handler registry mapping lower-cased method names to callables."""

from __future__ import annotations

import inspect
import threading
from typing import Any, Awaitable, Callable, Protocol, Sequence, Union


class OutputSink(Protocol):
    def write_line(self, text: object = "") -> None: ...


Handler = Callable[[OutputSink, Sequence[str]], Union[None, Awaitable[None]]]


class RegistrationError(ValueError):
    """Raised when a handler cannot be registered under the requested name."""


def normalize_name(name: str) -> str:
    if not name or any(ch.isspace() for ch in name):
        raise RegistrationError(f"invalid method name {name!r}")
    return name.lower()


def check_handler(name: str, handler: Any) -> None:
    if not callable(handler):
        raise RegistrationError(f"Cannot register method: {name}; handler is not callable")
    try:
        signature = inspect.signature(handler)
    except (TypeError, ValueError) as exc:
        raise RegistrationError(f"Cannot register method: {name}; {exc}") from exc
    try:
        signature.bind(None, None)
    except TypeError as exc:
        raise RegistrationError(
            f"Cannot register method: {name}; handler must accept (sink, args): {exc}"
        ) from exc


class HandlerRegistry:
    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._handlers

    def register(self, name: str, handler: Handler) -> None:
        key = normalize_name(name)
        check_handler(key, handler)
        with self._lock:
            self._handlers[key] = handler

    def register_method(self, obj: Any, attribute: str, name: str | None = None) -> None:
        """Register a bound method of a host object, named after the attribute by default."""
        try:
            handler = getattr(obj, attribute)
        except AttributeError as exc:
            raise RegistrationError(
                f"Cannot register method: {attribute}; {type(obj).__name__} has no such attribute"
            ) from exc
        self.register(name or attribute, handler)

    def unregister(self, name: str) -> None:
        with self._lock:
            self._handlers.pop(name.lower(), None)

    def lookup(self, name: str) -> Handler | None:
        with self._lock:
            return self._handlers.get(name.lower())

    def list_names(self) -> list[str]:
        with self._lock:
            return list(self._handlers)
