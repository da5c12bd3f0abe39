"""
Authorization session presentation.

The engine hands a presenter the authorization URL and awaits the callback
URL. ``SystemBrowserPresenter`` opens the user's browser and waits for the
host to pass back the redirect (from its URL-scheme handler, a pasted
address, or a test) through ``deliver``. The completion fires exactly once:
whichever of callback, cancellation or failure arrives first wins and every
later signal is ignored.
"""

import asyncio
import logging
import webbrowser
from abc import ABC, abstractmethod
from typing import Callable, Optional

from mcp_hub.core.exceptions import SessionStartFailedError, UserCancelledError

logger = logging.getLogger(__name__)


class SingleFireCompletion:
    """Resolve-once handle around an asyncio future.

    ``resolve`` and ``fail`` return False when the completion already fired.
    """

    def __init__(self) -> None:
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()

    @property
    def fired(self) -> bool:
        return self._future.done()

    def resolve(self, value: str) -> bool:
        if self._future.done():
            return False
        self._future.set_result(value)
        return True

    def fail(self, error: BaseException) -> bool:
        if self._future.done():
            return False
        self._future.set_exception(error)
        return True

    async def wait(self) -> str:
        return await self._future


class AuthorizationPresenter(ABC):
    """Shows the authorization page and returns the callback URL."""

    @abstractmethod
    async def authorize(self, authorization_url: str, callback_scheme: str) -> str:
        """Run one authorization session.

        Raises:
            UserCancelledError: If the user dismissed the session.
            SessionStartFailedError: If the session could not be shown.
        """
        pass

    def deliver(self, callback_url: str) -> bool:
        """Hand a redirect URL to the pending session. Returns False if none."""
        return False

    def cancel(self) -> None:
        """Dismiss the pending session, if any."""
        pass


class SystemBrowserPresenter(AuthorizationPresenter):
    """Opens the authorization URL in the default browser.

    Args:
        opener: Callable taking a URL and returning False if nothing could be
            opened (defaults to ``webbrowser.open``).
    """

    def __init__(self, opener: Optional[Callable[[str], bool]] = None) -> None:
        self.opener = opener or webbrowser.open
        self._completion: Optional[SingleFireCompletion] = None
        self._callback_scheme = ""

    @property
    def pending(self) -> bool:
        return self._completion is not None and not self._completion.fired

    async def authorize(self, authorization_url: str, callback_scheme: str) -> str:
        if self.pending:
            raise SessionStartFailedError("another authorization session is active")

        completion = SingleFireCompletion()
        self._completion = completion
        self._callback_scheme = callback_scheme
        try:
            opened = await asyncio.to_thread(self.opener, authorization_url)
            if not opened:
                raise SessionStartFailedError("no browser available")
            logger.info("Waiting for OAuth callback")
            return await completion.wait()
        finally:
            if self._completion is completion:
                self._completion = None

    def deliver(self, callback_url: str) -> bool:
        completion = self._completion
        if completion is None:
            logger.warning("Ignoring OAuth callback: no authorization session pending")
            return False
        if not callback_url.startswith(f"{self._callback_scheme}:"):
            logger.warning("Ignoring OAuth callback with unexpected scheme")
            return False
        return completion.resolve(callback_url)

    def cancel(self) -> None:
        completion = self._completion
        if completion is not None and completion.fail(UserCancelledError()):
            logger.info("OAuth authorization session cancelled")
