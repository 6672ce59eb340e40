"""Static-site rebuild trigger.

Decides *when* to call the deploy hook and tolerates its failures: a missed
rebuild is recovered by the next change or a manual trigger, so errors are
logged and never retried here.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import AsyncIterator, Optional

import httpx

from podcore.config import settings

logger = logging.getLogger(__name__)

_DEPLOY_TIMEOUT = httpx.Timeout(connect=5.0, read=10.0, write=5.0, pool=5.0)

# Reasons collected inside the active batch() of the current task, if any
_pending_batch: ContextVar[Optional[list[str]]] = ContextVar("deploy_batch", default=None)


class DeployTrigger:
    """Fires the deploy hook when publish-visible data changed."""

    def __init__(
        self,
        hook_url: Optional[str] = None,
        *,
        enabled: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.hook_url = hook_url
        self.enabled = enabled
        self._transport = transport

    async def notify_change(self, reason: str) -> bool:
        """Request a rebuild. Safe to call redundantly.

        Inside ``batch()`` the call is only recorded; the hook fires once
        when the batch exits.

        Returns:
            True if the hook accepted the request (or it was deferred to a batch).
        """
        batch = _pending_batch.get()
        if batch is not None:
            batch.append(reason)
            return True
        return await self._fire(reason)

    @asynccontextmanager
    async def batch(self) -> AsyncIterator[None]:
        """Coalesce every notify_change() in the block into one hook call."""
        if _pending_batch.get() is not None:
            # Nested batch: the outer one fires
            yield
            return
        reasons: list[str] = []
        token = _pending_batch.set(reasons)
        try:
            yield
        finally:
            _pending_batch.reset(token)
            # Writes made before an error in the block are already committed
            if reasons:
                await self._fire("; ".join(dict.fromkeys(reasons)))

    async def _fire(self, reason: str) -> bool:
        if not self.enabled:
            logger.info(f"Skipping web rebuild trigger (disabled): {reason}")
            return False
        if not self.hook_url:
            logger.info(f"Deploy hook URL not configured, skipping rebuild: {reason}")
            return False

        try:
            async with httpx.AsyncClient(
                timeout=_DEPLOY_TIMEOUT, transport=self._transport
            ) as client:
                response = await client.post(self.hook_url)
        except httpx.HTTPError as exc:
            logger.error(f"Error triggering web rebuild ({reason}): {exc}")
            return False

        if response.is_success:
            logger.info(f"Web rebuild triggered: {reason}")
            return True
        logger.error(
            f"Failed to trigger web rebuild ({reason}): "
            f"{response.status_code} {response.text[:200]}"
        )
        return False


def build_deploy_trigger() -> DeployTrigger:
    """Create the trigger from settings. Dev environments skip unless opted in."""
    return DeployTrigger(
        settings.deploy_hook_url,
        enabled=(not settings.is_dev) or settings.deploy_in_dev,
    )


# Singleton instance for convenience
deploy_trigger = build_deploy_trigger()


def get_deploy_trigger() -> DeployTrigger:
    """FastAPI dependency returning the shared trigger."""
    return deploy_trigger
