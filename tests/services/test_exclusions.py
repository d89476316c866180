import json

import httpx
import pytest

from cryptomovers.config import DEFAULT_EXCLUSION_SOURCES
from cryptomovers.providers.client import UpstreamClient
from cryptomovers.services.exclusions import ExclusionLoader, ExclusionSet


def test_membership_is_case_insensitive():
    exclusions = ExclusionSet(["USDT", " weth ", ""])

    assert "usdt" in exclusions
    assert "WETH" in exclusions
    assert "PEPE" not in exclusions
    assert None not in exclusions
    assert len(exclusions) == 2


@pytest.mark.asyncio
async def test_bundled_lists_load():
    exclusions = await ExclusionLoader(DEFAULT_EXCLUSION_SOURCES).load()

    assert "USDT" in exclusions
    assert "WBTC" in exclusions


@pytest.mark.asyncio
async def test_sources_fail_independently(tmp_path):
    good = tmp_path / "good.json"
    good.write_text(json.dumps(["DAI"]))
    wrong_shape = tmp_path / "shape.json"
    wrong_shape.write_text(json.dumps({"symbols": ["USDC"]}))

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/lists/rewards.json":
            return httpx.Response(200, json=["RWD"])
        return httpx.Response(500)

    client = UpstreamClient(transport=httpx.MockTransport(handler))
    loader = ExclusionLoader(
        [
            str(good),
            str(wrong_shape),
            str(tmp_path / "missing.json"),
            "https://assets.example/lists/rewards.json",
            "https://assets.example/lists/broken.json",
        ],
        client=client,
    )

    exclusions = await loader.load()
    await client.close()

    assert exclusions.symbols == frozenset({"dai", "rwd"})
