"""
Toast lifecycle for realtime notifications.

Each toast moves PENDING -> VISIBLE -> CLOSING -> REMOVED:

- PENDING: tracked but outside the visible window (at most ``max_visible``
  toasts are rendered; the rest wait in arrival order)
- VISIBLE: rendered; auto-closes ``auto_close_ms`` after becoming visible
- CLOSING: exit animation running; removed ``exit_grace_ms`` later
- REMOVED: purged from the queue

Timers run on the asyncio event loop. After ``close()`` no timer fires and no
in-flight action mutates the queue.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional
import asyncio
import logging

from crm_notifications.exceptions import RepositoryError
from crm_notifications.schemas.notification import NotificationResponse

logger = logging.getLogger(__name__)

DEFAULT_AUTO_CLOSE_MS = 5000
DEFAULT_EXIT_GRACE_MS = 300
DEFAULT_MAX_VISIBLE = 3

MarkRead = Callable[[str], Awaitable[bool]]


class ToastState(str, Enum):
    PENDING = "pending"
    VISIBLE = "visible"
    CLOSING = "closing"
    REMOVED = "removed"


@dataclass
class Toast:
    notification: NotificationResponse
    state: ToastState = ToastState.PENDING
    shown_at: Optional[float] = None
    closing_at: Optional[float] = None
    removed_at: Optional[float] = None
    _timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    @property
    def id(self) -> str:
        return self.notification.id


class ToastQueue:
    """Bounded on-screen stack of toasts over an unbounded backing list."""

    def __init__(
        self,
        mark_read: Optional[MarkRead] = None,
        on_navigate: Optional[Callable[[str], None]] = None,
        on_change: Optional[Callable[[], None]] = None,
        auto_close_ms: int = DEFAULT_AUTO_CLOSE_MS,
        exit_grace_ms: int = DEFAULT_EXIT_GRACE_MS,
        max_visible: int = DEFAULT_MAX_VISIBLE,
    ):
        self._mark_read = mark_read
        self._on_navigate = on_navigate
        self._on_change = on_change
        self.auto_close_ms = auto_close_ms
        self.exit_grace_ms = exit_grace_ms
        self.max_visible = max_visible
        self._toasts: List[Toast] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def toasts(self) -> List[Toast]:
        """Every tracked toast, in display order."""
        return list(self._toasts)

    @property
    def visible(self) -> List[Toast]:
        """The toasts currently rendered (visible or animating out)."""
        return [t for t in self._toasts if t.state in (ToastState.VISIBLE, ToastState.CLOSING)]

    def get(self, toast_id: str) -> Optional[Toast]:
        for toast in self._toasts:
            if toast.id == toast_id:
                return toast
        return None

    def push(self, notification: NotificationResponse) -> Optional[Toast]:
        """Track a toast for ``notification``; duplicates of a tracked id are ignored."""
        if self._closed or self.get(notification.id) is not None:
            return None
        toast = Toast(notification=notification)
        self._toasts.append(toast)
        self._promote()
        self._changed()
        return toast

    def dismiss(self, toast_id: str) -> None:
        """Explicit close by the user."""
        toast = self.get(toast_id)
        if toast is None:
            return
        if toast.state == ToastState.PENDING:
            self._remove(toast)
        elif toast.state == ToastState.VISIBLE:
            self._begin_closing(toast)

    async def activate(self, toast_id: str) -> None:
        """Action click: mark read, navigate when there is a target, close."""
        toast = self.get(toast_id)
        if toast is None or toast.state not in (ToastState.VISIBLE, ToastState.PENDING):
            return

        if self._mark_read is not None:
            try:
                await self._mark_read(toast.id)
            except RepositoryError as e:
                logger.warning("Could not mark notification %s read from toast: %s", toast.id, e)

        if self._closed or toast.state == ToastState.REMOVED:
            return
        if toast.notification.action_url and self._on_navigate is not None:
            self._on_navigate(toast.notification.action_url)
        self.dismiss(toast_id)

    def close(self) -> None:
        """Tear down: cancel timers and forget every toast."""
        self._closed = True
        for toast in self._toasts:
            self._cancel_timer(toast)
            toast.state = ToastState.REMOVED
        self._toasts.clear()

    def _promote(self) -> None:
        """Fill free slots in the visible window with the oldest pending toasts."""
        loop = asyncio.get_running_loop()
        for toast in self._toasts:
            if len(self.visible) >= self.max_visible:
                break
            if toast.state != ToastState.PENDING:
                continue
            toast.state = ToastState.VISIBLE
            toast.shown_at = loop.time()
            toast._timer = loop.call_later(self.auto_close_ms / 1000, self._begin_closing, toast)

    def _begin_closing(self, toast: Toast) -> None:
        if self._closed or toast.state != ToastState.VISIBLE:
            return
        self._cancel_timer(toast)
        loop = asyncio.get_running_loop()
        toast.state = ToastState.CLOSING
        toast.closing_at = loop.time()
        toast._timer = loop.call_later(self.exit_grace_ms / 1000, self._remove, toast)
        self._changed()

    def _remove(self, toast: Toast) -> None:
        if self._closed or toast.state == ToastState.REMOVED:
            return
        self._cancel_timer(toast)
        toast.state = ToastState.REMOVED
        toast.removed_at = asyncio.get_running_loop().time()
        self._toasts.remove(toast)
        self._promote()
        self._changed()

    @staticmethod
    def _cancel_timer(toast: Toast) -> None:
        if toast._timer is not None:
            toast._timer.cancel()
            toast._timer = None

    def _changed(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change()
        except Exception:
            logger.exception("Toast change callback failed")
