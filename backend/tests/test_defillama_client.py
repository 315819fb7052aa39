import httpx
import pytest

from app.core.exceptions import SourceMalformed, SourceUnavailable
from app.services.datasets import DatasetKind
from app.services.defillama_client import DefiLlamaClient
from conftest import POOLS_URL, PROTOCOLS_URL, json_handler, pool_raw, protocol_raw


@pytest.mark.asyncio
async def test_fetch_pools_returns_raw_payload(make_client):
    client = make_client(json_handler(pools=[pool_raw("p1", 2e6)]))

    payload = await client.fetch(DatasetKind.POOLS)
    records = client.extract_records(DatasetKind.POOLS, payload)

    assert payload["status"] == "success"
    assert records[0]["pool"] == "p1"
    await client.close()


@pytest.mark.asyncio
async def test_fetch_protocols_returns_bare_list(make_client):
    client = make_client(json_handler(protocols=[protocol_raw("1", 1e9)]))

    payload = await client.fetch(DatasetKind.PROTOCOLS)

    assert client.extract_records(DatasetKind.PROTOCOLS, payload)[0]["id"] == "1"
    await client.close()


@pytest.mark.asyncio
async def test_fetch_sends_user_agent(make_client):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["user_agent"] = request.headers.get("user-agent")
        seen["url"] = str(request.url)
        return httpx.Response(200, json=[])

    client = make_client(handler)
    await client.fetch(DatasetKind.PROTOCOLS)

    assert seen == {"user_agent": "DeFi-Dashboard-Sync/1.0", "url": PROTOCOLS_URL}
    await client.close()


@pytest.mark.asyncio
async def test_non_success_status_raises_unavailable(make_client):
    client = make_client(lambda request: httpx.Response(503))

    with pytest.raises(SourceUnavailable) as exc_info:
        await client.fetch(DatasetKind.POOLS)

    assert exc_info.value.status_code == 503
    assert "503" in exc_info.value.message
    await client.close()


@pytest.mark.asyncio
async def test_network_error_raises_unavailable(make_client):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)

    with pytest.raises(SourceUnavailable) as exc_info:
        await client.fetch(DatasetKind.POOLS)

    assert exc_info.value.status_code is None
    await client.close()


@pytest.mark.asyncio
async def test_timeout_raises_unavailable(make_client):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    client = make_client(handler)

    with pytest.raises(SourceUnavailable, match="timed out"):
        await client.fetch(DatasetKind.POOLS)
    await client.close()


@pytest.mark.asyncio
async def test_invalid_json_raises_malformed(make_client):
    client = make_client(lambda request: httpx.Response(200, content=b"<html>oops</html>"))

    with pytest.raises(SourceMalformed):
        await client.fetch(DatasetKind.POOLS)
    await client.close()


def test_extract_records_rejects_unexpected_shapes():
    with pytest.raises(SourceMalformed):
        DefiLlamaClient.extract_records(DatasetKind.POOLS, {"status": "success", "data": "nope"})
    with pytest.raises(SourceMalformed):
        DefiLlamaClient.extract_records(DatasetKind.POOLS, [])
    with pytest.raises(SourceMalformed):
        DefiLlamaClient.extract_records(DatasetKind.PROTOCOLS, {"data": []})


def test_url_for(test_settings):
    client = DefiLlamaClient(test_settings)

    assert client.url_for(DatasetKind.POOLS) == POOLS_URL
    assert client.url_for(DatasetKind.PROTOCOLS) == PROTOCOLS_URL
