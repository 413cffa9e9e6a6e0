import asyncio
import json
import logging
from typing import Any, Callable, List

import httpx
from pydantic import TypeAdapter, ValidationError

from ordertrack.core.config import settings
from ordertrack.core.errors import ApiErrorType
from ordertrack.models.schemas import (
    ApiResponse,
    CreateOrderRequest,
    Notification,
    Order,
    OrderSummary,
    ServerUpdates,
    TrackingSnapshot,
)

logger = logging.getLogger(__name__)

_ORDER = TypeAdapter(Order)
_ORDER_LIST = TypeAdapter(List[OrderSummary])
_TRACKING = TypeAdapter(TrackingSnapshot)
_UPDATES = TypeAdapter(ServerUpdates)
_NOTIFICATIONS = TypeAdapter(List[Notification])

INVALID_RESPONSE = "Invalid response from server"


def _should_retry(status: int) -> bool:
    # network failures, timeouts and server errors
    return status == 0 or status == 408 or status >= 500


def _error_message(body: Any) -> str | None:
    if isinstance(body, dict):
        for key in ("error", "message", "detail"):
            if isinstance(body.get(key), str):
                return body[key]
    return None


class ApiClient:
    """
    Async client for the delivery backend. Every call returns an ApiResponse
    envelope; transport problems never surface as exceptions.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        on_auth_error: Callable[[], None] | None = None,
        sleep=asyncio.sleep,
    ):
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.token = token
        self.max_retries = settings.request_max_retries if max_retries is None else max_retries
        self.retry_delay = settings.request_retry_delay_s if retry_delay is None else retry_delay
        self.on_auth_error = on_auth_error
        self._sleep = sleep
        self._owns_client = client is None
        if client is None:
            t = settings.request_timeout_s if timeout is None else timeout
            client = httpx.AsyncClient(timeout=httpx.Timeout(t, connect=5.0))
        self._client = client
        self._inflight: dict[str, asyncio.Future] = {}

    def set_auth_token(self, token: str | None):
        self.token = token

    def clear_token(self):
        self.token = None

    def headers(self):
        h = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.token:
            h["Authorization"] = f"Bearer {self.token}"
        return h

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    # ------------------------------------------------------------------ core

    async def request(self, method: str, path: str, json_body=None, params=None) -> ApiResponse:
        """Identical concurrent requests share one in-flight call."""
        key = f"{method}:{path}:{json.dumps(json_body, sort_keys=True, default=str)}:{params}"
        fut = self._inflight.get(key)
        if fut is None:
            fut = asyncio.ensure_future(self._request_with_retry(method, path, json_body, params))
            self._inflight[key] = fut

            def _forget(f, k=key):
                if self._inflight.get(k) is f:
                    del self._inflight[k]

            fut.add_done_callback(_forget)
        # one caller giving up must not cancel the call for the others
        return await asyncio.shield(fut)

    async def _request_with_retry(self, method, path, json_body, params) -> ApiResponse:
        resp = None
        for attempt in range(self.max_retries + 1):
            resp = await self._make_request(method, path, json_body, params)
            if resp.ok or not _should_retry(resp.status):
                return resp
            if attempt < self.max_retries:
                delay = self.retry_delay * 2 ** attempt
                logger.info("%s %s failed with status %s, retrying in %.2fs",
                            method, path, resp.status, delay)
                await self._sleep(delay)
        return resp

    async def _make_request(self, method, path, json_body, params) -> ApiResponse:
        url = f"{self.base_url}{path}"
        try:
            r = await self._client.request(method, url, json=json_body, params=params,
                                           headers=self.headers())
        except httpx.TimeoutException:
            return ApiResponse.failure(408)
        except httpx.HTTPError as exc:
            logger.debug("%s %s: %s", method, url, exc)
            return ApiResponse.failure(0)

        body = None
        if r.status_code != 204 and r.content:
            try:
                body = r.json()
            except ValueError:
                return ApiResponse.failure(r.status_code, INVALID_RESPONSE,
                                           error_type=ApiErrorType.INVALID_RESPONSE)

        if r.is_error:
            if r.status_code == 401:
                self._handle_auth_error()
            return ApiResponse.failure(r.status_code, _error_message(body), details=body)
        return ApiResponse(data=body, status=r.status_code)

    def _handle_auth_error(self):
        logger.warning("authentication rejected, clearing token")
        self.clear_token()
        if self.on_auth_error is not None:
            self.on_auth_error()

    @staticmethod
    def _parse(resp: ApiResponse, adapter: TypeAdapter) -> ApiResponse:
        if not resp.ok:
            return resp
        try:
            data = adapter.validate_python(resp.data)
        except ValidationError as exc:
            logger.warning("response did not match schema: %s", exc.error_count())
            return ApiResponse.failure(resp.status, INVALID_RESPONSE, details=exc.errors(),
                                       error_type=ApiErrorType.INVALID_RESPONSE)
        return ApiResponse(data=data, status=resp.status)

    # ---------------------------------------------------------------- orders

    async def get_order_tracking(self, order_id: int) -> ApiResponse[TrackingSnapshot]:
        return self._parse(await self.request("GET", f"/api/orders/{order_id}/tracking_info/"), _TRACKING)

    async def get_real_time_updates(self, since=None) -> ApiResponse[ServerUpdates]:
        params = None
        if since is not None:
            params = {"since": since.isoformat() if hasattr(since, "isoformat") else str(since)}
        return self._parse(await self.request("GET", "/api/orders/real_time_updates/", params=params), _UPDATES)

    async def list_orders(self) -> ApiResponse[List[OrderSummary]]:
        return self._parse(await self.request("GET", "/api/orders/"), _ORDER_LIST)

    async def get_order(self, order_id: int) -> ApiResponse[Order]:
        return self._parse(await self.request("GET", f"/api/orders/{order_id}/"), _ORDER)

    async def create_order(self, request: CreateOrderRequest | dict) -> ApiResponse[Order]:
        if not isinstance(request, CreateOrderRequest):
            request = CreateOrderRequest.model_validate(request)
        body = request.model_dump(exclude_none=True)
        return self._parse(await self.request("POST", "/api/orders/", json_body=body), _ORDER)

    async def update_order_status(self, order_id: int, status) -> ApiResponse[Order]:
        status = getattr(status, "value", status)
        resp = await self.request("PATCH", f"/api/orders/{order_id}/update_status/",
                                  json_body={"status": status})
        return self._parse(resp, _ORDER)

    # --------------------------------------------------------- notifications

    async def get_notifications(self) -> ApiResponse[List[Notification]]:
        return self._parse(await self.request("GET", "/api/notifications/"), _NOTIFICATIONS)

    async def get_unread_count(self) -> ApiResponse[int]:
        resp = await self.request("GET", "/api/notifications/unread_count/")
        if not resp.ok:
            return resp
        count = resp.data.get("unread_count") if isinstance(resp.data, dict) else None
        if not isinstance(count, int):
            return ApiResponse.failure(resp.status, INVALID_RESPONSE,
                                       error_type=ApiErrorType.INVALID_RESPONSE)
        return ApiResponse(data=count, status=resp.status)

    async def mark_notification_read(self, notification_id: int) -> ApiResponse:
        return await self.request("PATCH", f"/api/notifications/{notification_id}/mark_read/")

    async def mark_all_notifications_read(self) -> ApiResponse:
        return await self.request("POST", "/api/notifications/mark_all_read/")
