import asyncio

from ordertrack.core.states import is_terminal
from ordertrack.models.schemas import Notification, OrderSummary, RealTimeUpdatePayload
from ordertrack.services.api_client import ApiClient
from ordertrack.services.realtime import RealTimeTracker


class DashboardView:
    def __init__(self, api: ApiClient, tracker: RealTimeTracker):
        self.api = api
        self.tracker = tracker
        self.orders: list[OrderSummary] = []
        self.notifications: list[Notification] = []
        self.unread_count = 0
        self.error: str | None = None
        self._refresh: asyncio.Task | None = None

    @property
    def active_orders(self) -> list[OrderSummary]:
        return [o for o in self.orders if not is_terminal(o.status)]

    def open(self):
        self.tracker.subscribe(self.on_updates)

    def close(self):
        self.tracker.unsubscribe(self.on_updates)
        if self._refresh is not None and not self._refresh.done():
            self._refresh.cancel()
        self._refresh = None

    async def __aenter__(self):
        self.open()
        await self.load()
        return self

    async def __aexit__(self, *exc):
        self.close()

    async def load(self):
        self.error = None
        orders = await self.api.list_orders()
        if orders.ok:
            self.orders = list(orders.data)
        else:
            self.error = orders.error
        await self.refresh_notifications()

    async def refresh_notifications(self):
        notifications = await self.api.get_notifications()
        if notifications.ok:
            self.notifications = list(notifications.data)
        unread = await self.api.get_unread_count()
        if unread.ok:
            self.unread_count = unread.data

    def on_updates(self, payload: RealTimeUpdatePayload):
        # the payload is the full current list, not a delta
        self.orders = list(payload.orders)
        if self._refresh is not None and not self._refresh.done():
            return
        self._refresh = asyncio.get_running_loop().create_task(self.refresh_notifications())
