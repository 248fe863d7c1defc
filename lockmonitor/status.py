"""Lifecycle record of a single monitored lock request."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

from lockmonitor.utils.common import LockMonitorError, LockState

if TYPE_CHECKING:  # pragma: no cover - typing only
    from lockmonitor.monitor import LockMonitorBase
    from lockmonitor.options import StackOptions
    from lockmonitor.stackinfo import StackInfo


class InvalidTransition(LockMonitorError):
    """Raised when a status is moved out of WAITING -> PROCESSING -> FINISHED order."""


class LockStatus:
    """State of one lock request, from queued to released.

    Only the owning monitor moves a status forward.  The status keeps a
    back-reference to that monitor for rendering live queue counters; it never
    changes the monitor through it except to report its own transitions.
    """

    def __init__(
        self,
        monitor: "LockMonitorBase",
        stack: "StackInfo",
        stack_options: "StackOptions",
        *,
        name: Optional[str] = None,
        keyed: bool = False,
    ) -> None:
        self.monitor = monitor
        self.stack = stack
        self.stack_options = stack_options
        self.name = name
        self.keyed = keyed
        self.state = LockState.WAITING

    @property
    def id(self) -> int:
        return self.stack.id

    @property
    def decorated_name(self) -> str:
        if self.name is None or self.name == "":
            return ""
        if self.keyed:
            return f"<{self.name}>"
        return f"({self.name})"

    def transition_to(self, new_state: LockState) -> None:
        previous = self.state
        successor = previous.successor
        if successor is None or successor != new_state:
            raise InvalidTransition(
                f"Lock status #{self.id} cannot move from {previous.value} to "
                f"{getattr(new_state, 'value', new_state)}."
            )
        self.state = successor
        self.monitor._status_changed(self, previous)

    def format_stack(self, **overrides: Any) -> str:
        return self.stack.format(self.stack_options.with_overrides(**overrides))

    def format_status(self, depth: int = 2) -> str:
        return f"{self.state.value}{self.decorated_name} - " + self.format_stack(depth=depth)

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state.value,
            "name": self.name,
            "waiting": self.monitor.waiting,
            "progress": self.monitor.progress,
            "stack": self.format_stack(),
        }

    def __repr__(self) -> str:
        return (
            f"<LockStatus id={self.id} state={self.state.value} "
            f"waiting={self.monitor.waiting} stack={self.format_stack()} />"
        )


__all__ = ["InvalidTransition", "LockStatus"]
