"""Call-site capture for lock requests.

A :class:`StackInfo` is taken synchronously when ``lock()`` is called, before
the request can suspend, so the recorded frames describe the real caller and
not whatever resumes the coroutine later.  Frames are copied into plain
:class:`CallSite` records straight away; no frame objects are kept alive.
"""

from __future__ import annotations

from dataclasses import dataclass
import inspect
import os
from typing import TYPE_CHECKING, Any, List, Optional, Sequence, Tuple

if TYPE_CHECKING:  # pragma: no cover - typing only
    from types import FrameType

    from lockmonitor.options import StackOptions


@dataclass(frozen=True)
class CallSite:
    type_name: Optional[str] = None
    function_name: Optional[str] = None
    file: Optional[str] = None
    line: Optional[int] = None
    col: Optional[int] = None

    @classmethod
    def from_frame(cls, frame: "FrameType") -> "CallSite":
        code = frame.f_code
        function_name = code.co_name
        if function_name == "<module>":
            function_name = None

        col: Optional[int] = None
        line: Optional[int] = frame.f_lineno
        try:
            positions = getattr(inspect.getframeinfo(frame, context=0), "positions", None)
        except Exception:  # pragma: no cover - source positions are best-effort
            positions = None
        if positions is not None:
            if positions.lineno is not None:
                line = positions.lineno
            if positions.col_offset is not None:
                col = positions.col_offset + 1

        return cls(
            type_name=_owner_type_name(frame),
            function_name=function_name,
            file=code.co_filename or None,
            line=line,
            col=col,
        )


def _owner_type_name(frame: "FrameType") -> Optional[str]:
    code = frame.f_code
    if not code.co_varnames or code.co_argcount == 0:
        return None
    first_arg = code.co_varnames[0]
    if first_arg not in ("self", "cls"):
        return None
    owner: Any = frame.f_locals.get(first_arg)
    if owner is None:
        return None
    if first_arg == "cls" and isinstance(owner, type):
        return owner.__name__
    return type(owner).__name__


def relative_path(path: str, root: str) -> str:
    """Return ``path`` relative to ``root``, or ``path`` when that is impossible."""

    if path.startswith("<"):
        return path
    try:
        return os.path.relpath(path, root)
    except ValueError:
        # Different drives on Windows.
        return path


class StackInfo:
    """Captured call sites of one lock request."""

    __slots__ = ("id", "frames")

    def __init__(self, request_id: int, frames: Sequence[CallSite] = ()) -> None:
        self.id = request_id
        self.frames: Tuple[CallSite, ...] = tuple(frames)

    def __len__(self) -> int:
        return len(self.frames)

    def __repr__(self) -> str:
        return f"<StackInfo id={self.id} frames={len(self.frames)}>"

    @classmethod
    def capture(
        cls, request_id: int, skip: int = 1, limit: Optional[int] = None
    ) -> "StackInfo":
        """Capture the current call stack.

        ``skip`` counts frames from this method's own frame: ``skip=1`` starts
        at the direct caller of :meth:`capture`.  ``limit`` caps the number of
        frames kept.  Never raises; if the interpreter offers no frames the
        result is empty.
        """

        frames: List[CallSite] = []
        frame = inspect.currentframe()
        try:
            for _ in range(max(0, skip)):
                if frame is None:
                    break
                frame = frame.f_back
            while frame is not None:
                if limit is not None and len(frames) >= limit:
                    break
                frames.append(CallSite.from_frame(frame))
                frame = frame.f_back
        except Exception:  # pragma: no cover - capture must never fail a lock
            frames = []
        finally:
            del frame
        return cls(request_id, frames)

    def format(self, options: "StackOptions") -> str:
        """Render up to ``options.depth`` call sites as one line."""

        parts: List[str] = []
        for site in self.frames[: options.depth]:
            formatted = f"#{self.id} "
            if site.type_name:
                formatted += site.type_name + "."
            formatted += site.function_name or "<anon>"

            if options.show_loc and site.file:
                location = relative_path(site.file, options.root)
                if site.line is not None:
                    location += f":{site.line}"
                    if site.col is not None:
                        location += f":{site.col}"
                formatted += f" ({location})"

            parts.append(formatted)

        return options.join_str.join(parts)


__all__ = ["CallSite", "StackInfo", "relative_path"]
