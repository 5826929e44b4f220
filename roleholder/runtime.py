from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Condition, Lock
from typing import Callable

from . import db

IDLE = "idle"
RUNNING = "running"
SUCCESS = "success"
FAILURE = "failure"

TERMINAL_STATES = {SUCCESS, FAILURE}


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class ConcurrentRequestRejected(Exception):
    """A request was issued for a key whose handle is not idle."""

    def __init__(self, handle: "RequestHandle", state: str) -> None:
        super().__init__(f"Request for {handle.key} is {state}.")
        self.handle = handle
        self.state = state


@dataclass(frozen=True)
class RequestKey:
    role_name: str
    package_name: str
    user: int

    def __str__(self) -> str:
        return f"{self.role_name}:{self.package_name}@{self.user}"


Subscriber = Callable[["RequestHandle", str], None]


class RequestHandle:
    """State of the manage-role-holder request for one (role, package, user).

    idle -> running -> success|failure. Only reset_state() brings a terminal
    handle back to idle, so a consumer sees the terminal value before the slot
    can be reused.
    """

    def __init__(self, key: RequestKey) -> None:
        self.key = key
        self._cond = Condition(Lock())
        self._state = IDLE
        self._subscribers: list[Subscriber] = []
        self.add: bool | None = None
        self.error: BaseException | None = None
        self.started_at: str | None = None
        self.finished_at: str | None = None

    @property
    def state(self) -> str:
        with self._cond:
            return self._state

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register callback(handle, state) for every transition; returns an unsubscribe function."""
        with self._cond:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._cond:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def begin(self, add: bool) -> None:
        with self._cond:
            state = self._state
            if state == IDLE:
                self._state = RUNNING
                self.add = add
                self.error = None
                self.started_at = utc_now()
                self.finished_at = None
        # Raised outside the lock so handlers can read the handle.
        if state != IDLE:
            raise ConcurrentRequestRejected(self, state)
        self._notify(RUNNING)

    def finish(self, error: BaseException | None = None) -> None:
        with self._cond:
            if self._state != RUNNING:
                raise RuntimeError(f"Cannot finish request {self.key} in state {self._state}.")
            self._state = FAILURE if error is not None else SUCCESS
            self.error = error
            self.finished_at = utc_now()
            state = self._state
            self._cond.notify_all()
        self._notify(state)

    def reset_state(self) -> bool:
        """Return a terminal handle to idle. Running or idle handles are left alone."""
        with self._cond:
            if self._state not in TERMINAL_STATES:
                return False
            self._state = IDLE
            self.add = None
            self.error = None
            self.started_at = None
            self.finished_at = None
        self._notify(IDLE)
        return True

    def wait(self, timeout: float | None = None) -> str:
        """Block until the handle is no longer running; returns the state seen."""
        with self._cond:
            self._cond.wait_for(lambda: self._state != RUNNING, timeout=timeout)
            return self._state

    def snapshot(self) -> dict:
        with self._cond:
            return {
                "role": self.key.role_name,
                "package": self.key.package_name,
                "user": self.key.user,
                "state": self._state,
                "add": self.add,
                "error": f"{type(self.error).__name__}: {self.error}" if self.error else None,
                "started_at": self.started_at,
                "finished_at": self.finished_at,
            }

    def _notify(self, state: str) -> None:
        with self._cond:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            # A subscriber must never stall the transition it observes.
            try:
                callback(self, state)
            except Exception as e:
                db.log_event(
                    "ERROR",
                    f"Subscriber failed on '{state}': {type(e).__name__}: {e}",
                    role_name=self.key.role_name,
                    package_name=self.key.package_name,
                    user=self.key.user,
                )


class RuntimeState:
    """In-memory request handles, one per key."""

    def __init__(self) -> None:
        self.lock = Lock()
        self.handles: dict[RequestKey, RequestHandle] = {}

    def get_handle(self, key: RequestKey) -> RequestHandle:
        with self.lock:
            handle = self.handles.get(key)
            if handle is None:
                handle = RequestHandle(key)
                self.handles[key] = handle
            return handle

    def peek_handle(self, key: RequestKey) -> RequestHandle | None:
        """Like get_handle, but never creates one."""
        with self.lock:
            return self.handles.get(key)

    def list_handles(self, role_name: str | None = None) -> list[RequestHandle]:
        with self.lock:
            handles = list(self.handles.values())
        if role_name:
            handles = [h for h in handles if h.key.role_name == role_name]
        return handles
