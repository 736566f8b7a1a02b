"""
Tests for the client-side auth state aggregator
"""

import asyncio

import httpx
import pytest

from app.client.auth_service import AUTH_DATA_PATH, AuthData, AuthService, ClientUser
from app.core.ttl_cache import InMemoryTTLCache

USER = ClientUser(id="5f0c8a34-5c3e-4bb4-9a4b-0c6a1f8d7e21", email="user@example.com")

SUBSCRIBER_BODY = {
    "success": True,
    "data": {
        "isSubscriber": True,
        "subscription": {"status": "active"},
        "hasCompletedOnboarding": True,
        "selectedPlanId": "pro",
    },
}


class RecordingHandler:
    """MockTransport handler that counts requests and replies with a fixed body"""

    def __init__(self, body=None, status_code=200):
        self.body = body if body is not None else SUBSCRIBER_BODY
        self.status_code = status_code
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body)


def make_service(handler, clock):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://api.test")
    return AuthService(http_client, cache=InMemoryTTLCache(30, clock=clock))


class TestFetchAuthData:
    @pytest.mark.asyncio
    async def test_maps_response(self, fake_clock):
        handler = RecordingHandler()
        service = make_service(handler, fake_clock)

        auth_data = await service.fetch_auth_data(USER, session="session-1")

        assert auth_data.user == USER
        assert auth_data.session == "session-1"
        assert auth_data.is_subscriber is True
        assert auth_data.has_completed_onboarding is True
        assert auth_data.selected_plan == "pro"
        request = handler.requests[0]
        assert request.url.path == AUTH_DATA_PATH
        assert request.url.params["user_id"] == USER.id

    @pytest.mark.asyncio
    async def test_cached_within_ttl(self, fake_clock):
        handler = RecordingHandler()
        service = make_service(handler, fake_clock)

        await service.fetch_auth_data(USER)
        fake_clock.advance(29)
        await service.fetch_auth_data(USER)

        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_refetched_after_ttl(self, fake_clock):
        handler = RecordingHandler()
        service = make_service(handler, fake_clock)

        await service.fetch_auth_data(USER)
        fake_clock.advance(31)
        await service.fetch_auth_data(USER)

        assert len(handler.requests) == 2

    @pytest.mark.asyncio
    async def test_refetched_after_invalidate(self, fake_clock):
        handler = RecordingHandler()
        service = make_service(handler, fake_clock)

        await service.fetch_auth_data(USER)
        service.invalidate_cache(USER.id)
        await service.fetch_auth_data(USER)

        assert len(handler.requests) == 2

    @pytest.mark.asyncio
    async def test_cache_hit_carries_current_session(self, fake_clock):
        service = make_service(RecordingHandler(), fake_clock)

        await service.fetch_auth_data(USER, session="old")
        auth_data = await service.fetch_auth_data(USER, session="new")

        assert auth_data.session == "new"

    @pytest.mark.asyncio
    async def test_server_error_yields_defaults(self, fake_clock):
        handler = RecordingHandler(body={"detail": "boom"}, status_code=500)
        service = make_service(handler, fake_clock)

        auth_data = await service.fetch_auth_data(USER)

        assert auth_data == AuthData(user=USER)
        assert service.get_optimistic_auth_data(USER) is None

    @pytest.mark.asyncio
    async def test_network_error_yields_defaults(self, fake_clock):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        service = make_service(handler, fake_clock)

        auth_data = await service.fetch_auth_data(USER)

        assert auth_data.is_subscriber is False
        assert auth_data.has_completed_onboarding is False

    @pytest.mark.asyncio
    async def test_no_user(self, fake_clock):
        handler = RecordingHandler()
        service = make_service(handler, fake_clock)

        assert await service.fetch_auth_data(None) == AuthData()
        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_response_after_invalidate_is_discarded(self, fake_clock):
        started = asyncio.Event()
        release = asyncio.Event()

        async def handler(request):
            started.set()
            await release.wait()
            return httpx.Response(200, json=SUBSCRIBER_BODY)

        service = make_service(handler, fake_clock)
        seen = []
        service.subscribe(seen.append)

        task = asyncio.create_task(service.fetch_auth_data(USER))
        await started.wait()
        service.invalidate_cache(USER.id)
        release.set()
        await task

        assert service.get_optimistic_auth_data(USER) is None
        assert seen == []


    @pytest.mark.asyncio
    async def test_older_response_never_replaces_newer(self, fake_clock):
        bodies = [
            {"data": {"isSubscriber": False, "hasCompletedOnboarding": False}},
            {"data": {"isSubscriber": True, "hasCompletedOnboarding": True}},
        ]
        arrived = [asyncio.Event(), asyncio.Event()]
        release = [asyncio.Event(), asyncio.Event()]
        order = []

        async def handler(request):
            index = len(order)
            order.append(index)
            arrived[index].set()
            await release[index].wait()
            return httpx.Response(200, json=bodies[index])

        service = make_service(handler, fake_clock)
        seen = []
        service.subscribe(seen.append)

        older = asyncio.create_task(service.fetch_auth_data(USER))
        await arrived[0].wait()
        newer = asyncio.create_task(service.fetch_auth_data(USER))
        await arrived[1].wait()

        release[1].set()
        newer_data = await newer
        release[0].set()
        await older

        assert newer_data.is_subscriber is True
        assert service.get_optimistic_auth_data(USER).is_subscriber is True
        assert [data.is_subscriber for data in seen] == [True]

class TestSubscribers:
    @pytest.mark.asyncio
    async def test_listener_notified_and_unsubscribed(self, fake_clock):
        service = make_service(RecordingHandler(), fake_clock)
        seen = []
        unsubscribe = service.subscribe(seen.append)

        await service.fetch_auth_data(USER)
        unsubscribe()
        service.optimistic_update(USER.id, has_completed_onboarding=False)

        assert len(seen) == 1
        assert seen[0].is_subscriber is True

    @pytest.mark.asyncio
    async def test_optimistic_update_patches_cache(self, fake_clock):
        service = make_service(RecordingHandler(), fake_clock)
        await service.fetch_auth_data(USER)

        service.optimistic_update(USER.id, selected_plan="enterprise")

        assert service.get_optimistic_auth_data(USER).selected_plan == "enterprise"

    def test_optimistic_update_without_entry_is_noop(self, fake_clock):
        service = make_service(RecordingHandler(), fake_clock)
        seen = []
        service.subscribe(seen.append)

        service.optimistic_update(USER.id, is_subscriber=True)

        assert seen == []
        assert service.get_optimistic_auth_data(USER) is None


class TestAuthDecision:
    @pytest.mark.parametrize("auth_data,path,destination,should_redirect", [
        (AuthData(), "/dashboard", "/login", True),
        (AuthData(user=USER), "/onboarding", "/onboarding", False),
        (AuthData(user=USER, is_subscriber=True), "/onboarding", "/dashboard", True),
        (AuthData(user=USER, is_subscriber=True), "/dashboard", "/dashboard", False),
    ])
    def test_decision(self, fake_clock, auth_data, path, destination, should_redirect):
        service = make_service(RecordingHandler(), fake_clock)

        decision = service.get_auth_decision(auth_data, path)

        assert decision.destination == destination
        assert decision.should_redirect is should_redirect
