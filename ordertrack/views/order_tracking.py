import asyncio
import logging

from ordertrack.core.errors import InvalidTransitionError, MalformedOrderError
from ordertrack.models.schemas import RealTimeUpdatePayload, TrackingSnapshot
from ordertrack.services.api_client import ApiClient
from ordertrack.services.realtime import RealTimeTracker
from ordertrack.services.tracking import apply_optimistic_status, build_tracking_snapshot

logger = logging.getLogger(__name__)


class OrderTrackingView:
    """Detail page for one order; reloads its snapshot when the order changes."""

    def __init__(self, order_id: int, api: ApiClient, tracker: RealTimeTracker):
        self.order_id = order_id
        self.api = api
        self.tracker = tracker
        self.snapshot: TrackingSnapshot | None = None
        self.error: str | None = None
        self.loading = False
        self._reload: asyncio.Task | None = None

    @property
    def progress(self) -> int:
        return self.snapshot.progress_percentage if self.snapshot else 0

    def open(self):
        self.tracker.subscribe(self.on_updates)

    def close(self):
        self.tracker.unsubscribe(self.on_updates)
        if self._reload is not None and not self._reload.done():
            self._reload.cancel()
        self._reload = None

    async def __aenter__(self):
        self.open()
        try:
            await self.load()
        except BaseException:
            self.close()
            raise
        return self

    async def __aexit__(self, *exc):
        self.close()

    async def load(self):
        self.loading = True
        self.error = None
        try:
            resp = await self.api.get_order_tracking(self.order_id)
            if not resp.ok:
                self.error = resp.error
                return
            server = resp.data
            # rebuilt locally so the steps never depend on the server's own rendering
            self.snapshot = build_tracking_snapshot(
                server.order,
                server.recent_notifications,
                now=server.last_updated,
                estimated_delivery=server.estimated_delivery,
            )
        except MalformedOrderError as exc:
            self.error = str(exc)
        finally:
            self.loading = False

    def on_updates(self, payload: RealTimeUpdatePayload):
        if self.order_id not in payload.changed_order_ids:
            return
        if self._reload is not None and not self._reload.done():
            return
        self._reload = asyncio.get_running_loop().create_task(self.load())

    async def set_status(self, status, user_roles=None) -> bool:
        """
        Show `status` right away, then confirm with the server. A rejected
        update restores what was shown before.
        """
        previous = self.snapshot
        if previous is not None:
            try:
                moved = apply_optimistic_status(previous.order, status, user_roles=user_roles)
            except InvalidTransitionError as exc:
                self.error = str(exc)
                return False
            self.snapshot = build_tracking_snapshot(moved, previous.recent_notifications)

        resp = await self.api.update_order_status(self.order_id, status)
        if not resp.ok:
            logger.info("status update for order %s rejected: %s", self.order_id, resp.error)
            self.snapshot = previous
            self.error = resp.error
            return False
        notifications = previous.recent_notifications if previous else ()
        self.snapshot = build_tracking_snapshot(resp.data, notifications)
        return True
