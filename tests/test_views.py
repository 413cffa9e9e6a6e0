from datetime import datetime, timezone

import pytest

from fakes import FakeApi, ScriptedTransport, make_order, settle
from ordertrack.models.schemas import ApiResponse, Notification, Order, RealTimeUpdatePayload, TrackingSnapshot
from ordertrack.services.realtime import RealTimeTracker, TrackerState
from ordertrack.views.dashboard import DashboardView
from ordertrack.views.order_tracking import OrderTrackingView

pytestmark = pytest.mark.anyio

NOW = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)


def tracking_response(order_id, status):
    snap = TrackingSnapshot(order=Order.model_validate(make_order(order_id, status)), last_updated=NOW)
    return ApiResponse(data=snap, status=200)


def tracker_for(transport):
    return RealTimeTracker(transport, poll_interval=3600, fetch_timeout=5, poll_immediately=False)


async def test_tracking_view_derives_steps_from_server_order():
    api = FakeApi()
    api.tracking[5] = tracking_response(5, "IN_TRANSIT")
    tracker = tracker_for(ScriptedTransport())
    async with OrderTrackingView(5, api, tracker) as view:
        assert tracker.subscriber_count == 1
        assert view.progress == 75
        assert [s.completed for s in view.snapshot.tracking_steps] == [True, True, True, True, False]
        assert view.snapshot.tracking_steps[3].description == "Your order is on the way to the delivery location."
    assert tracker.state is TrackerState.IDLE


async def test_tracking_view_reloads_only_for_its_order():
    api = FakeApi()
    api.tracking[5] = tracking_response(5, "PICKED_UP")
    transport = ScriptedTransport(
        [make_order(5, "PICKED_UP"), make_order(6)],
        [make_order(5, "PICKED_UP"), make_order(6, "ASSIGNED")],
        [make_order(5, "IN_TRANSIT"), make_order(6, "ASSIGNED")],
    )
    tracker = tracker_for(transport)
    async with OrderTrackingView(5, api, tracker) as view:
        assert api.tracking_calls == 1
        await tracker.refresh()
        await settle()
        assert api.tracking_calls == 2

        await tracker.refresh()
        await settle()
        assert api.tracking_calls == 2

        api.tracking[5] = tracking_response(5, "IN_TRANSIT")
        await tracker.refresh()
        await settle()
        assert api.tracking_calls == 3
        assert view.progress == 75


async def test_tracking_view_surfaces_fetch_errors():
    api = FakeApi()
    tracker = tracker_for(ScriptedTransport())
    async with OrderTrackingView(404, api, tracker) as view:
        assert view.snapshot is None
        assert view.error == "The requested resource was not found."
        assert not view.loading


async def test_tracking_view_marks_malformed_order():
    api = FakeApi()
    api.tracking[5] = tracking_response(5, "CREATED")
    api.tracking[5].data.order.status = None
    tracker = tracker_for(ScriptedTransport())
    async with OrderTrackingView(5, api, tracker) as view:
        assert view.error == "Order has no status"


async def test_optimistic_status_is_rolled_back_on_rejection():
    api = FakeApi()
    api.tracking[5] = tracking_response(5, "ASSIGNED")
    api.status_result = ApiResponse.failure(403)
    tracker = tracker_for(ScriptedTransport())
    async with OrderTrackingView(5, api, tracker) as view:
        before = view.snapshot
        ok = await view.set_status("PICKED_UP", user_roles=["COURIER"])
        assert not ok
        assert view.snapshot is before
        assert view.error == "You do not have permission to perform this action."
        assert api.status_calls == [(5, "PICKED_UP")]


async def test_optimistic_status_confirmed_by_server():
    api = FakeApi()
    api.tracking[5] = tracking_response(5, "ASSIGNED")
    api.status_result = ApiResponse(data=Order.model_validate(make_order(5, "PICKED_UP")), status=200)
    tracker = tracker_for(ScriptedTransport())
    async with OrderTrackingView(5, api, tracker) as view:
        assert await view.set_status("PICKED_UP")
        assert view.progress == 50


async def test_illegal_status_never_reaches_the_server():
    api = FakeApi()
    api.tracking[5] = tracking_response(5, "DELIVERED")
    tracker = tracker_for(ScriptedTransport())
    async with OrderTrackingView(5, api, tracker) as view:
        assert not await view.set_status("ASSIGNED")
        assert api.status_calls == []
        assert view.progress == 100


async def test_dashboard_takes_payload_as_current_state():
    api = FakeApi()
    api.orders = ApiResponse(data=[], status=200)
    api.unread = ApiResponse(data=3, status=200)
    transport = ScriptedTransport([make_order(1, "IN_TRANSIT"), make_order(2, "DELIVERED"), make_order(3, "CANCELLED")])
    tracker = tracker_for(transport)
    async with DashboardView(api, tracker) as dash:
        assert dash.unread_count == 3
        assert dash.orders == []
        await tracker.refresh()
        assert [o.id for o in dash.orders] == [1, 2, 3]
        assert [o.id for o in dash.active_orders] == [1]
    assert tracker.subscriber_count == 0


async def test_dashboard_refreshes_notifications_on_updates():
    api = FakeApi()
    api.unread = ApiResponse(data=1, status=200)
    transport = ScriptedTransport([make_order(1)], [make_order(1, "ASSIGNED")], [make_order(1, "PICKED_UP")])
    tracker = tracker_for(transport)
    async with DashboardView(api, tracker) as dash:
        assert dash.unread_count == 1
        assert dash.notifications == []
        assert api.notification_calls == 1

        api.unread = ApiResponse(data=2, status=200)
        api.notifications = ApiResponse(data=[
            Notification(id=7, title="Order assigned", message="rider-7 is on the way", created_at=NOW),
        ], status=200)
        await tracker.refresh()
        await settle()
        assert dash.unread_count == 2
        assert [n.id for n in dash.notifications] == [7]

        # a failed refresh keeps what is already shown
        api.unread = ApiResponse.failure(503)
        await tracker.refresh()
        await settle()
        assert dash.unread_count == 2
        assert api.notification_calls == 3


async def test_dashboard_refresh_does_not_overlap():
    api = FakeApi()
    tracker = tracker_for(ScriptedTransport())
    async with DashboardView(api, tracker) as dash:
        calls = api.notification_calls
        payload = RealTimeUpdatePayload(orders=[], changed_order_ids=[1], timestamp=NOW)
        dash.on_updates(payload)
        dash.on_updates(payload)
        await settle()
        assert api.notification_calls == calls + 1


async def test_two_views_share_one_poll():
    api = FakeApi()
    api.tracking[1] = tracking_response(1, "ASSIGNED")
    transport = ScriptedTransport([make_order(1, "ASSIGNED")])
    tracker = tracker_for(transport)
    async with DashboardView(api, tracker) as dash, OrderTrackingView(1, api, tracker):
        await tracker.refresh()
        await settle()
        assert transport.calls == 1
        assert [o.id for o in dash.orders] == [1]
        assert api.tracking_calls == 2
    assert tracker.state is TrackerState.IDLE
