"""
Change Notifier

Listens to the remote change feed for one owner and turns foreign changes
into a reload request. It never applies a payload itself: the reload re-runs
the gated pull path, so "local state now reflects remote" has exactly one
code path.

Rules:
- Events stamped with our own origin are echoes of our own pushes: ignored
- A burst of events collapses into one reload
- While a local push is pending the reload is skipped; the local push will
  replace the remote copy anyway (last full push wins)
"""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

from budget_sync.audit import AuditLogger
from budget_sync.models.audit import AuditEvent, AuditEventBuilder
from budget_sync.models.sync import ChangeEvent, EntityKind
from budget_sync.services.storage import ChangeFeedInterface, Subscription


logger = structlog.get_logger("budget_sync.sync.notifier")

ReloadCallback = Callable[[], Awaitable[None]]


class ChangeNotifier:
    """Per-owner subscription to both change streams (records, settings)."""

    def __init__(
        self,
        owner_id: str,
        feed: ChangeFeedInterface,
        origin: str,
        reload: ReloadCallback,
        is_push_pending: Optional[Callable[[], bool]] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        """
        Args:
            owner_id: Owner whose streams are watched
            feed: Remote change feed
            origin: Session ID of the local writer; its events are ignored
            reload: Coroutine function that re-runs the gated pull
            is_push_pending: Reports whether a local push is still scheduled
            audit_logger: Optional audit trail
        """
        self.owner_id = owner_id
        self._feed = feed
        self._origin = origin
        self._reload = reload
        self._is_push_pending = is_push_pending or (lambda: False)
        self._audit_logger = audit_logger

        self._subscriptions: list[Subscription] = []
        self._reload_task: Optional[asyncio.Task] = None
        self._reload_requested = False
        self._pending_events: list[ChangeEvent] = []
        self.reload_count = 0

    @property
    def is_active(self) -> bool:
        return bool(self._subscriptions)

    def start(self) -> None:
        if self._subscriptions:
            return
        for kind in EntityKind:
            self._subscriptions.append(
                self._feed.subscribe(self.owner_id, kind, self._on_change)
            )
        logger.info("Change notifier started", owner_id=self.owner_id)

    async def stop(self) -> None:
        """Release every subscription exactly once and drop queued reloads."""
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
        self._reload_requested = False
        self._pending_events = []

        if self._reload_task is not None and not self._reload_task.done():
            self._reload_task.cancel()
            try:
                await self._reload_task
            except asyncio.CancelledError:
                pass
        self._reload_task = None
        logger.info("Change notifier stopped", owner_id=self.owner_id)

    def _on_change(self, event: ChangeEvent) -> None:
        if not self._subscriptions or event.owner_id != self.owner_id:
            return
        if event.origin == self._origin:
            return

        logger.info(
            "Remote change received",
            owner_id=self.owner_id,
            kind=event.kind.value,
            change=event.event_type.value,
        )
        self._pending_events.append(event)
        self._reload_requested = True
        if self._reload_task is None or self._reload_task.done():
            self._reload_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        # Yield once so that events arriving in the same burst are folded in
        await asyncio.sleep(0)
        while self._reload_requested:
            self._reload_requested = False
            events, self._pending_events = self._pending_events, []
            for event in events:
                await self._record(AuditEventBuilder.remote_change_received(
                    self.owner_id, event.kind.value, event.event_type.value, event.origin
                ))

            if self._is_push_pending():
                logger.info(
                    "Skipping reload, local push pending",
                    owner_id=self.owner_id,
                )
                continue

            self.reload_count += 1
            await self._record(AuditEventBuilder.reload_triggered(self.owner_id, "remote change"))
            try:
                await self._reload()
            except Exception as e:
                logger.exception("Reload after remote change failed", owner_id=self.owner_id)
                await self._record(AuditEventBuilder.system_error(
                    error_type="reload_failed",
                    error_message=str(e),
                    owner_id=self.owner_id,
                ))

    async def _record(self, event: AuditEvent) -> None:
        if self._audit_logger is not None:
            await self._audit_logger.log(event)
        else:
            logger.debug(event.description, **event.to_log_dict())
