"""Tests for the two resubmission protocols."""

import httpx
import pytest
import respx

from resubmitter.clients.management import ManagementClient
from resubmitter.contracts import NotFoundError, PermanentError, WorkflowReference
from resubmitter.engine.cache import TriggerMetadataCache
from resubmitter.engine.protocols import CallbackReplay, StandardResubmit, select_protocol
from tests.conftest import CALLBACK_URL, WORKFLOW_PATH, history_item, run_detail

TRIGGER_PATH = f"{WORKFLOW_PATH}/triggers/manual"


def test_select_protocol(client: ManagementClient) -> None:
    cache = TriggerMetadataCache(client)

    assert isinstance(select_protocol(False, client, cache), StandardResubmit)
    assert isinstance(select_protocol(True, client, cache), CallbackReplay)
    assert StandardResubmit.creates_new_run is False
    assert CallbackReplay.creates_new_run is True


class TestStandardResubmit:
    @pytest.mark.asyncio
    @respx.mock
    async def test_posts_resubmit_once_per_run(self, client: ManagementClient, workflow_ref: WorkflowReference) -> None:
        detail = respx.get(path__regex=rf"{WORKFLOW_PATH}/runs/[^/]+$").mock(return_value=httpx.Response(200, json=run_detail("r1")))
        resubmit = respx.post(path__regex=rf"{TRIGGER_PATH}/histories/[^/]+/resubmit$").mock(return_value=httpx.Response(202))
        protocol = StandardResubmit(client, TriggerMetadataCache(client))

        await protocol.execute(workflow_ref, "r1")
        await protocol.execute(workflow_ref, "r2")

        assert detail.call_count == 1  # trigger name is cached after the first run
        assert [call.request.url.path for call in resubmit.calls] == [
            f"{TRIGGER_PATH}/histories/r1/resubmit",
            f"{TRIGGER_PATH}/histories/r2/resubmit",
        ]
        assert resubmit.calls.last.request.url.params["api-version"] == "2018-11-01"
        assert resubmit.calls.last.request.content == b""

    @pytest.mark.asyncio
    @respx.mock
    async def test_remote_error_propagates(self, client: ManagementClient, workflow_ref: WorkflowReference) -> None:
        respx.get(path=f"{WORKFLOW_PATH}/runs/r1").mock(return_value=httpx.Response(200, json=run_detail("r1")))
        respx.post(path=f"{TRIGGER_PATH}/histories/r1/resubmit").mock(return_value=httpx.Response(409, text="conflict"))

        with pytest.raises(PermanentError):
            await StandardResubmit(client, TriggerMetadataCache(client)).execute(workflow_ref, "r1")


class TestCallbackReplay:
    @pytest.mark.asyncio
    @respx.mock
    async def test_replays_captured_payload(self, client: ManagementClient, workflow_ref: WorkflowReference) -> None:
        respx.get(path=f"{WORKFLOW_PATH}/runs/r1").mock(return_value=httpx.Response(200, json=run_detail("r1")))
        respx.post(path=f"{TRIGGER_PATH}/listCallbackUrl").mock(return_value=httpx.Response(200, json={"value": CALLBACK_URL}))
        respx.get(path=f"{TRIGGER_PATH}/histories/r1").mock(
            return_value=httpx.Response(200, json=history_item("r1", inputs_uri="https://blob.example/r1?sig=payload"))
        )
        payload = respx.get(host="blob.example", path="/r1").mock(
            return_value=httpx.Response(
                200,
                json={"method": "POST", "headers": {"Content-Type": "application/json"}, "body": {"orderId": 42}},
            )
        )
        replay = respx.post(host="app-1.azurewebsites.net").mock(return_value=httpx.Response(202))

        await CallbackReplay(client, TriggerMetadataCache(client)).execute(workflow_ref, "r1")

        assert "Authorization" not in payload.calls.last.request.headers
        replayed = replay.calls.last.request
        assert "Authorization" not in replayed.headers
        assert replayed.content == b'{"orderId":42}'
        assert replayed.url.params["sig"] == "abc123"

    @pytest.mark.asyncio
    @respx.mock
    async def test_uses_prefetched_link(self, client: ManagementClient, workflow_ref: WorkflowReference) -> None:
        respx.get(path=f"{WORKFLOW_PATH}/runs/r1").mock(return_value=httpx.Response(200, json=run_detail("r1")))
        respx.post(path=f"{TRIGGER_PATH}/listCallbackUrl").mock(return_value=httpx.Response(200, json={"value": CALLBACK_URL}))
        respx.get(path=f"{TRIGGER_PATH}/histories").mock(
            return_value=httpx.Response(200, json={"value": [history_item("r1", inputs_uri="https://blob.example/r1")]})
        )
        respx.get(host="blob.example", path="/r1").mock(return_value=httpx.Response(200, json={"body": "plain text"}))
        replay = respx.post(host="app-1.azurewebsites.net").mock(return_value=httpx.Response(200))
        cache = TriggerMetadataCache(client, page_delay_seconds=0)
        await cache.bulk_prefetch_inputs_links(workflow_ref, ["r1"])

        await CallbackReplay(client, cache).execute(workflow_ref, "r1")

        assert replay.calls.last.request.content == b"plain text"
        # No per-run history lookup was needed
        assert all(not call.request.url.path.endswith("/histories/r1") for call in respx.calls)

    @pytest.mark.asyncio
    @respx.mock
    async def test_missing_payload_link(self, client: ManagementClient, workflow_ref: WorkflowReference) -> None:
        respx.get(path=f"{WORKFLOW_PATH}/runs/r1").mock(return_value=httpx.Response(200, json=run_detail("r1")))
        respx.post(path=f"{TRIGGER_PATH}/listCallbackUrl").mock(return_value=httpx.Response(200, json={"value": CALLBACK_URL}))
        respx.get(path=f"{TRIGGER_PATH}/histories/r1").mock(return_value=httpx.Response(200, json=history_item("r1")))

        with pytest.raises(NotFoundError):
            await CallbackReplay(client, TriggerMetadataCache(client)).execute(workflow_ref, "r1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            httpx.Response(200, json=["not", "an", "envelope"]),
            httpx.Response(200, json="plain"),
            httpx.Response(200),
        ],
        ids=["array", "string", "empty"],
    )
    async def test_unusable_payload_is_never_replayed(
        self, client: ManagementClient, workflow_ref: WorkflowReference, payload: httpx.Response
    ) -> None:
        with respx.mock(assert_all_called=False) as router:
            router.get(path=f"{WORKFLOW_PATH}/runs/r1").mock(return_value=httpx.Response(200, json=run_detail("r1")))
            router.post(path=f"{TRIGGER_PATH}/listCallbackUrl").mock(return_value=httpx.Response(200, json={"value": CALLBACK_URL}))
            router.get(path=f"{TRIGGER_PATH}/histories/r1").mock(
                return_value=httpx.Response(200, json=history_item("r1", inputs_uri="https://blob.example/r1"))
            )
            router.get(host="blob.example").mock(return_value=payload)
            replay = router.post(host="app-1.azurewebsites.net").mock(return_value=httpx.Response(202))

            with pytest.raises(NotFoundError, match="not a request envelope"):
                await CallbackReplay(client, TriggerMetadataCache(client)).execute(workflow_ref, "r1")

        assert replay.call_count == 0
