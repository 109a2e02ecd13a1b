"""Install lifecycle events with disposable subscriptions."""

import logging
from typing import Any, Callable

from swipefeed.app_state import INSTALLED_KEY, AppStateStore

logger = logging.getLogger(__name__)


class Subscription:
    """Handle returned by InstallLifecycle.subscribe; dispose() detaches it."""

    def __init__(self, lifecycle: "InstallLifecycle", listener_id: int):
        self._lifecycle = lifecycle
        self._listener_id = listener_id
        self.disposed = False

    def dispose(self) -> None:
        if self.disposed:
            return
        self._lifecycle._remove(self._listener_id)
        self.disposed = True

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()


class InstallLifecycle:
    """Routes install prompt and installed events to subscribers.

    The installed event is also recorded in the AppStateStore so it
    survives cache eviction.
    """

    def __init__(self, state: AppStateStore):
        self.state = state
        self._listeners: dict[int, tuple[Callable | None, Callable | None]] = {}
        self._next_id = 0
        self.deferred_prompt: Any = None

    def subscribe(
        self,
        on_prompt: Callable[[Any], None] | None = None,
        on_installed: Callable[[], None] | None = None,
    ) -> Subscription:
        listener_id = self._next_id
        self._next_id += 1
        self._listeners[listener_id] = (on_prompt, on_installed)
        return Subscription(self, listener_id)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def prompt_available(self, event: Any) -> None:
        """Keep the prompt for later use and notify subscribers."""
        self.deferred_prompt = event
        logger.info("Install prompt available")
        for on_prompt, _ in list(self._listeners.values()):
            if on_prompt is not None:
                on_prompt(event)

    async def app_installed(self) -> None:
        """Record the installation and notify subscribers."""
        logger.info("App installed")
        self.deferred_prompt = None
        await self.state.set_flag(INSTALLED_KEY, True)
        for _, on_installed in list(self._listeners.values()):
            if on_installed is not None:
                on_installed()

    async def is_installed(self) -> bool:
        return await self.state.get_flag(INSTALLED_KEY) is True

    def _remove(self, listener_id: int) -> None:
        self._listeners.pop(listener_id, None)
