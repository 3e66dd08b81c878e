# tests/unit/integrations/test_google_business.py
import json

import httpx
import pytest

from app.core.enums import JobStatus, SyncOperationType
from app.core.exceptions import ExternalAPIError
from app.integrations.google_business import GoogleBusinessClient, categories_to_records
from app.services.handlers import CategoryMirrorHandler, HandlerRegistry
from app.services.job_executor import JobExecutor
from app.services.reconciliation import SyncOperation

LOCATION_CATEGORIES = {
    "categories": {
        "primaryCategory": {"name": "categories/gcid:musical_instrument_store", "displayName": "Musical instrument store"},
        "additionalCategories": [
            {"name": "categories/gcid:guitar_store", "displayName": "Guitar store"},
        ],
    }
}


class FakeLocation:
    """Stores the location's categories and serves GET/PATCH"""

    def __init__(self, categories):
        self.categories = categories
        self.patches = []

    def __call__(self, request):
        if request.method == "GET":
            assert request.url.params["readMask"] == "categories"
            return httpx.Response(200, json={"categories": self.categories})
        body = json.loads(request.content)
        assert request.url.params["updateMask"] == "categories"
        self.patches.append(body)
        self.categories = body["categories"]
        return httpx.Response(200, json=body)


def _client(settings, handler):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GoogleBusinessClient(http_client=http_client, settings=settings)


def test_categories_to_records():
    records = categories_to_records(LOCATION_CATEGORIES["categories"])

    assert records == [
        {"category_id": "gcid:musical_instrument_store", "display_name": "Musical instrument store", "primary": True},
        {"category_id": "gcid:guitar_store", "display_name": "Guitar store", "primary": False},
    ]


@pytest.mark.asyncio
async def test_list_records_reads_location(settings):
    location = FakeLocation(LOCATION_CATEGORIES["categories"])
    client = _client(settings, location)

    records = await client.list_records("acme", "tok", context={"location_id": "123"})

    assert [r["category_id"] for r in records] == ["gcid:musical_instrument_store", "gcid:guitar_store"]


@pytest.mark.asyncio
async def test_create_primary_demotes_existing_primary(settings):
    location = FakeLocation(LOCATION_CATEGORIES["categories"])
    client = _client(settings, location)
    operation = SyncOperation(
        SyncOperationType.CREATE,
        "gcid:music_store",
        record={"category_id": "gcid:music_store", "display_name": "Music store", "primary": True},
    )

    await client.apply("acme", "tok", operation, context={"location_id": "locations/123"})

    assert location.categories["primaryCategory"]["name"] == "categories/gcid:music_store"
    additional = [c["name"] for c in location.categories["additionalCategories"]]
    assert additional == ["categories/gcid:musical_instrument_store", "categories/gcid:guitar_store"]


@pytest.mark.asyncio
async def test_delete_removes_category(settings):
    location = FakeLocation(LOCATION_CATEGORIES["categories"])
    client = _client(settings, location)
    operation = SyncOperation(SyncOperationType.DELETE, "gcid:guitar_store", external={"category_id": "gcid:guitar_store"})

    await client.apply("acme", "tok", operation, context={"location_id": "123"})

    assert location.categories["additionalCategories"] == []
    assert location.categories["primaryCategory"]["name"] == "categories/gcid:musical_instrument_store"


@pytest.mark.asyncio
async def test_location_required(settings):
    client = _client(settings, FakeLocation({}))

    with pytest.raises(ExternalAPIError) as exc_info:
        await client.list_records("acme", "tok")

    assert exc_info.value.error_code == "config"


class StrictLocation(FakeLocation):
    """Rejects a categories object without a primary category, like GBP does"""

    def __call__(self, request):
        if request.method == "PATCH" and "primaryCategory" not in json.loads(request.content)["categories"]:
            return httpx.Response(400, json={"error": {"message": "primaryCategory is required"}})
        return super().__call__(request)


@pytest.mark.asyncio
async def test_moving_primary_category_promotes_before_demoting(job_queue, credentials, settings, clock):
    location = StrictLocation({
        "primaryCategory": {"name": "categories/gcid:a_store", "displayName": "A store"},
        "additionalCategories": [{"name": "categories/gcid:b_store", "displayName": "B store"}],
    })
    client = GoogleBusinessClient(
        location_ids={"acme": "123"},
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(location)),
        settings=settings,
    )
    executor = JobExecutor(job_queue, HandlerRegistry([CategoryMirrorHandler(client)]), credentials, settings=settings, clock=clock)
    job = await job_queue.enqueue("acme", "category-mirror", payload={"categories": [
        {"category_id": "gcid:a_store", "primary": False},
        {"category_id": "gcid:b_store", "primary": True},
    ]})
    [claimed] = await job_queue.claim_ready(1)

    assert await executor.execute(claimed) == JobStatus.SUCCESS

    assert (await job_queue.get_job(job.id)).result == {"created": 0, "updated": 2, "deleted": 0, "unchanged": 0}
    assert all("primaryCategory" in patch["categories"] for patch in location.patches)
    assert location.categories["primaryCategory"]["name"] == "categories/gcid:b_store"
