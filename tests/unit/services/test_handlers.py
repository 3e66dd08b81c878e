# tests/unit/services/test_handlers.py
import pytest

from app.core.enums import JobStatus, Provider, SyncOperationType
from app.core.exceptions import SyncError
from app.models.sync_job import SyncJob
from app.services.handlers import CategoryMirrorHandler, FeedPushHandler, HandlerRegistry
from app.services.job_executor import JobExecutor
from app.services.reconciliation import SyncOperation
from tests.mocks.mock_platform import InMemoryPlatformClient


def _job(kind, payload, target_key=None):
    return SyncJob(id="job-1", tenant_id="acme", kind=kind, target_key=target_key, payload=payload, retry_count=0)


@pytest.mark.asyncio
async def test_feed_push_loads_payload_items():
    handler = FeedPushHandler(InMemoryPlatformClient())
    records = await handler.load_local(_job("feed-push", {"items": [{"sku": " A-100 ", "price": "10"}]}))

    assert records[0]["sku"] == "A-100"
    assert records[0]["currency"] == "USD"
    assert records[0]["availability"] == "in stock"


@pytest.mark.asyncio
async def test_feed_push_without_items_or_inventory_source():
    handler = FeedPushHandler(InMemoryPlatformClient())

    with pytest.raises(SyncError) as exc_info:
        await handler.load_local(_job("feed-push", {}))

    assert exc_info.value.error_code == "invalid_payload"


def test_handler_context_comes_from_payload():
    feed = FeedPushHandler(InMemoryPlatformClient())
    mirror = CategoryMirrorHandler(InMemoryPlatformClient(key_field="category_id"))

    assert feed.context(_job("feed-push", {"merchant_id": "42"})) == {"merchant_id": "42"}
    assert feed.context(_job("feed-push", {})) == {}
    assert mirror.context(_job("category-mirror", {"location_id": "locations/9"})) == {"location_id": "locations/9"}


@pytest.mark.asyncio
async def test_fetch_remote_restricts_to_target_key(mocker):
    client = InMemoryPlatformClient()
    spy = mocker.spy(client, "list_records")
    handler = FeedPushHandler(client)

    await handler.fetch_remote(_job("feed-push", {}, target_key="A-100"), "tok")

    assert spy.call_args.kwargs["keys"] == ["A-100"]


def test_registry():
    feed = FeedPushHandler(InMemoryPlatformClient())
    mirror = CategoryMirrorHandler(InMemoryPlatformClient(key_field="category_id"))
    registry = HandlerRegistry([feed, mirror])

    assert registry.kinds == ["category-mirror", "feed-push"]
    assert registry.get("feed-push") is feed
    assert "category-mirror" in registry
    assert registry.get("price-sync") is None


@pytest.mark.asyncio
async def test_category_mirror_end_to_end(job_queue, credentials, settings, clock):
    client = InMemoryPlatformClient(
        key_field="category_id",
        provider=Provider.GOOGLE_BUSINESS,
        records=[
            {"category_id": "gcid:guitar_store", "display_name": "Guitar store", "primary": True},
            {"category_id": "gcid:pawn_shop", "display_name": "Pawn shop", "primary": False},
        ],
    )
    executor = JobExecutor(
        job_queue, HandlerRegistry([CategoryMirrorHandler(client)]), credentials, settings=settings, clock=clock
    )
    job = await job_queue.enqueue("acme", "category-mirror", payload={
        "location_id": "locations/9",
        "categories": [
            {"category_id": "gcid:guitar_store", "display_name": "Guitar store", "primary": False},
            {"category_id": "GCID:Music_Store", "display_name": "Music store", "primary": True},
        ],
    })
    claimed = await job_queue.claim_ready(1)

    assert await executor.execute(claimed[0]) == JobStatus.SUCCESS

    done = await job_queue.get_job(job.id)
    assert done.result == {"created": 1, "updated": 1, "deleted": 1, "unchanged": 0}
    assert sorted(client.records) == ["gcid:guitar_store", "gcid:music_store"]
    assert credentials.calls == [("acme", Provider.GOOGLE_BUSINESS)]


@pytest.mark.asyncio
async def test_category_without_display_name_settles(job_queue, credentials, settings, clock):
    client = InMemoryPlatformClient(
        key_field="category_id",
        provider=Provider.GOOGLE_BUSINESS,
        records=[{"category_id": "gcid:bakery", "display_name": "Bakery", "primary": True}],
    )
    executor = JobExecutor(
        job_queue, HandlerRegistry([CategoryMirrorHandler(client)]), credentials, settings=settings, clock=clock
    )
    job = await job_queue.enqueue("acme", "category-mirror", payload={
        "location_id": "locations/9",
        "categories": [{"category_id": "gcid:bakery", "primary": True}],
    })
    claimed = await job_queue.claim_ready(1)

    await executor.execute(claimed[0])

    assert (await job_queue.get_job(job.id)).result == {"created": 0, "updated": 0, "deleted": 0, "unchanged": 1}
    assert client.apply_calls == []


def test_category_mirror_applies_new_primary_first():
    handler = CategoryMirrorHandler(InMemoryPlatformClient(key_field="category_id"))
    demote = SyncOperation(SyncOperationType.UPDATE, "gcid:a", record={"category_id": "gcid:a", "primary": False})
    promote = SyncOperation(SyncOperationType.UPDATE, "gcid:b", record={"category_id": "gcid:b", "primary": True})
    delete = SyncOperation(SyncOperationType.DELETE, "gcid:c", external={"category_id": "gcid:c"})

    assert handler.order_operations([demote, promote, delete]) == [promote, demote, delete]
