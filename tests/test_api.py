"""
Tests for the devnet REST API.

Covers:
  - Query routes (health, status, accounts, balances, auctions, tokens, receipts, events)
  - Transaction routes for the full auction lifecycle
  - Revert / unknown-account / bad-input error mapping
  - Chain time control routes
  - API key authentication, rate limiting, CORS and body-size limits
"""

from __future__ import annotations

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from nftmarket_core import api as api_module
from nftmarket_core.api import APIServer, _safe_int, _TokenBucket, _wei_safe
from nftmarket_core.config import APIConfig, NFTMarketConfig
from nftmarket_core.devnet import Devnet
from nftmarket_core.units import parse_ether

# ─── Helpers ────────────────────────────────────────────────────────

GENESIS_TS = 1_700_000_000


def _build_api_config(**overrides):
    """Build an APIConfig dataclass for testing."""
    defaults = {
        "enabled": True,
        "host": "127.0.0.1",
        "port": 0,
        "api_key": "",
        "rate_limit_rpm": 0,
        "cors_origins": [],
        "max_body_bytes": 1_048_576,
    }
    defaults.update(overrides)
    return APIConfig(**defaults)


def _make_devnet() -> Devnet:
    cfg = NFTMarketConfig()
    cfg.chain.genesis_timestamp = GENESIS_TS
    cfg.chain.accounts = 4
    return Devnet(cfg)


def _make_test_client(api_config=None, devnet=None):
    """Create an aiohttp TestClient from an APIServer."""
    devnet = devnet or _make_devnet()
    api = APIServer(devnet, host="127.0.0.1", port=0, api_config=api_config or _build_api_config())
    return TestClient(TestServer(api.make_app())), devnet


async def _post(client, path, body, status=200, **kwargs):
    resp = await client.post(path, json=body, **kwargs)
    assert resp.status == status, await resp.text()
    return await resp.json() if resp.content_type == "application/json" else None


async def _open_auction(client, devnet):
    """Creator (account 1) mints token 1 and auctions it for one hour."""
    await _post(client, "/tx/nft/mint", {"from": 1})
    await _post(client, "/tx/nft/approve", {"from": 1, "token_id": 1})
    return await _post(client, "/tx/auction/create", {
        "from": 1, "token_id": 1, "starting_price": "1", "duration": 3600,
    })


# ═══════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════

class TestInputHelpers:
    def test_safe_int(self):
        assert _safe_int("7") == 7
        for bad in ("x", None, 1.5, True, -1):
            with pytest.raises(web.HTTPBadRequest):
                _safe_int(bad)

    def test_wei_safe(self):
        assert _wei_safe({"a": [10 ** 18, 5, True]}) == {"a": [str(10 ** 18), 5, True]}

    def test_token_bucket(self):
        bucket = _TokenBucket(2)
        assert bucket.allow("1.1.1.1")
        assert bucket.allow("1.1.1.1")
        assert not bucket.allow("1.1.1.1")
        assert bucket.allow("2.2.2.2")
        assert _TokenBucket(0).allow("x")

    def test_token_bucket_prunes_idle_clients(self, monkeypatch):
        clock = [1000.0]
        monkeypatch.setattr(api_module.time, "monotonic", lambda: clock[0])
        bucket = _TokenBucket(2)
        assert bucket.allow("1.1.1.1")
        assert bucket.allow("1.1.1.1")
        clock[0] += 30
        assert bucket.allow("2.2.2.2")
        clock[0] += 31
        assert bucket.allow("2.2.2.2")
        assert "1.1.1.1" not in bucket._buckets
        assert "2.2.2.2" in bucket._buckets
        # a pruned client starts again with a full bucket
        assert bucket.allow("1.1.1.1")
        assert bucket.allow("1.1.1.1")


# ═══════════════════════════════════════════════════════════════════
#  Queries
# ═══════════════════════════════════════════════════════════════════

class TestQueries:
    @pytest.mark.asyncio
    async def test_health(self):
        client, devnet = _make_test_client()
        async with client:
            resp = await client.get("/health")
            assert resp.status == 200
            data = await resp.json()
            assert data["ok"] is True
            assert data["block_number"] == devnet.chain.block.number

    @pytest.mark.asyncio
    async def test_status(self):
        client, devnet = _make_test_client()
        async with client:
            data = await (await client.get("/status")).json()
            assert data["marketplace"] == devnet.marketplace.address
            assert data["fee_bps"] == 250

    @pytest.mark.asyncio
    async def test_accounts_and_balance(self):
        client, devnet = _make_test_client()
        async with client:
            accounts = await (await client.get("/accounts")).json()
            assert len(accounts) == 4
            assert accounts[0]["address"] == devnet.chain.accounts[0].address
            assert accounts[1]["balance"] == str(parse_ether("10000"))

            addr = devnet.chain.accounts[2].address
            data = await (await client.get(f"/balance/{addr.lower()}")).json()
            assert data["address"] == addr
            assert data["balance"] == str(parse_ether("10000"))

    @pytest.mark.asyncio
    async def test_bad_address(self):
        client, _ = _make_test_client()
        async with client:
            resp = await client.get("/balance/not-an-address")
            assert resp.status == 404
            assert (await resp.json())["error"] == "unknown_account"

    @pytest.mark.asyncio
    async def test_unknown_auction_and_token(self):
        client, _ = _make_test_client()
        async with client:
            assert (await client.get("/auction/0")).status == 404
            assert (await client.get("/auction/abc")).status == 400
            assert (await client.get("/nft/1")).status == 404

    @pytest.mark.asyncio
    async def test_unknown_tx(self):
        client, _ = _make_test_client()
        async with client:
            assert (await client.get("/tx/0x" + "00" * 32)).status == 404


# ═══════════════════════════════════════════════════════════════════
#  Auction lifecycle over HTTP
# ═══════════════════════════════════════════════════════════════════

class TestAuctionFlow:
    @pytest.mark.asyncio
    async def test_create_bid_end_withdraw(self):
        client, devnet = _make_test_client()
        async with client:
            created = await _open_auction(client, devnet)
            assert created["status"] == "mined"
            assert created["auction_id"] == 0
            assert created["receipt"]["events"][-1]["event"] == "AuctionCreated"

            await _post(client, "/tx/auction/bid", {"from": 2, "auction_id": 0, "amount": "1"})
            bid = await _post(client, "/tx/auction/bid", {"from": 3, "auction_id": 0, "amount": "2.5"})
            assert bid["receipt"]["events"][0]["event"] == "BidPlaced"

            auction = await (await client.get("/auction/0")).json()
            assert auction["highestBidder"] == devnet.chain.accounts[3].address
            assert auction["highestBid"] == str(parse_ether("2.5"))

            bidder = devnet.chain.accounts[2].address
            pending = await (await client.get(f"/pending/{bidder}")).json()
            assert pending["pending"] == str(parse_ether("1"))

            await _post(client, "/evm/increase_time", {"seconds": 3600})
            ended = await _post(client, "/tx/auction/end", {"from": 2, "auction_id": 0})
            assert ended["winner"] == devnet.chain.accounts[3].address

            withdrawn = await _post(client, "/tx/withdraw", {"from": 2})
            assert withdrawn["amount"] == str(parse_ether("1"))

            token = await (await client.get("/nft/1")).json()
            assert token["owner"] == devnet.chain.accounts[3].address
            assert token["tokenURI"] == "ipfs://ghlocale/1"

            auctions = await (await client.get("/auctions")).json()
            assert auctions[0]["status"] == "ENDED"

    @pytest.mark.asyncio
    async def test_revert_is_reported(self):
        client, devnet = _make_test_client()
        async with client:
            await _open_auction(client, devnet)
            data = await _post(
                client, "/tx/auction/bid", {"from": 1, "auction_id": 0, "amount": "2"}, status=400,
            )
            assert data == {"error": "reverted", "reason": "Seller cannot bid"}

    @pytest.mark.asyncio
    async def test_auction_ended_over_http(self):
        client, devnet = _make_test_client()
        async with client:
            await _open_auction(client, devnet)
            await _post(client, "/evm/increase_time", {"seconds": 5 * 24 * 60 * 60})
            data = await _post(
                client, "/tx/auction/bid", {"from": 2, "auction_id": 0, "amount": "2"}, status=400,
            )
            assert data["reason"] == "Auction Ended"

    @pytest.mark.asyncio
    async def test_not_owner_over_http(self):
        client, devnet = _make_test_client()
        async with client:
            await _post(client, "/tx/nft/mint", {"from": 1})
            await _post(client, "/tx/nft/approve", {"from": 1, "token_id": 1})
            data = await _post(client, "/tx/auction/create", {
                "from": 0, "token_id": 1, "starting_price": "1", "duration": 400,
            }, status=400)
            assert data["reason"] == "Not owner"

    @pytest.mark.asyncio
    async def test_duration_counts_from_mining_block(self):
        client, devnet = _make_test_client()
        async with client:
            await _post(client, "/tx/nft/mint", {"from": 1})
            await _post(client, "/tx/nft/approve", {"from": 1, "token_id": 1})
            created = await _post(client, "/tx/auction/create", {
                "from": 1, "token_id": 1, "starting_price": "1", "duration": 1,
            })
            auction = await (await client.get("/auction/0")).json()
            assert auction["endTime"] == created["receipt"]["timestamp"] + 1
            assert auction["startTime"] == created["receipt"]["timestamp"]

    @pytest.mark.asyncio
    async def test_cancel(self):
        client, devnet = _make_test_client()
        async with client:
            await _open_auction(client, devnet)
            await _post(client, "/tx/auction/cancel", {"from": 1, "auction_id": 0})
            auction = await (await client.get("/auction/0")).json()
            assert auction["status"] == "CANCELLED"

    @pytest.mark.asyncio
    async def test_receipt_and_events(self):
        client, devnet = _make_test_client()
        async with client:
            minted = await _post(client, "/tx/nft/mint", {"from": 1})
            tx_hash = minted["receipt"]["tx_hash"]
            receipt = await (await client.get(f"/tx/{tx_hash}")).json()
            assert receipt["function"] == "mint"
            assert receipt["value"] == str(parse_ether("0.5"))

            events = await (await client.get("/events", params={"name": "Transfer"})).json()
            assert len(events) == 1
            assert events[0]["args"]["tokenId"] == 1

            by_address = await (await client.get(
                "/events", params={"address": devnet.marketplace.address},
            )).json()
            assert by_address == []

    @pytest.mark.asyncio
    async def test_mine(self):
        client, devnet = _make_test_client()
        async with client:
            start = devnet.chain.block.number
            data = await _post(client, "/evm/mine", {"blocks": 3})
            assert data["block_number"] == start + 3


# ═══════════════════════════════════════════════════════════════════
#  Input validation
# ═══════════════════════════════════════════════════════════════════

class TestValidation:
    @pytest.mark.asyncio
    async def test_malformed_json(self):
        client, _ = _make_test_client()
        async with client:
            resp = await client.post(
                "/tx/withdraw", data="{not json", headers={"Content-Type": "application/json"},
            )
            assert resp.status == 400

    @pytest.mark.asyncio
    async def test_body_must_be_object(self):
        client, _ = _make_test_client()
        async with client:
            assert (await client.post("/tx/withdraw", json=[1, 2])).status == 400

    @pytest.mark.asyncio
    async def test_bad_amounts(self):
        client, devnet = _make_test_client()
        async with client:
            await _open_auction(client, devnet)
            for amount in ("-1", "abc", None, "0.0000000000000000001"):
                resp = await client.post(
                    "/tx/auction/bid", json={"from": 2, "auction_id": 0, "amount": amount},
                )
                assert resp.status == 400, amount

    @pytest.mark.asyncio
    async def test_create_requires_end(self):
        client, devnet = _make_test_client()
        async with client:
            resp = await client.post(
                "/tx/auction/create", json={"from": 1, "token_id": 1, "starting_price": "1"},
            )
            assert resp.status == 400

    @pytest.mark.asyncio
    async def test_unknown_sender(self):
        client, _ = _make_test_client()
        async with client:
            resp = await client.post("/tx/nft/mint", json={"from": 42})
            assert resp.status == 404

    @pytest.mark.asyncio
    async def test_negative_time(self):
        client, _ = _make_test_client()
        async with client:
            assert (await client.post("/evm/increase_time", json={"seconds": -5})).status == 400


# ═══════════════════════════════════════════════════════════════════
#  Security middleware
# ═══════════════════════════════════════════════════════════════════

class TestSecurity:
    @pytest.mark.asyncio
    async def test_get_allowed_without_key(self):
        client, _ = _make_test_client(_build_api_config(api_key="secret123"))
        async with client:
            assert (await client.get("/health")).status == 200

    @pytest.mark.asyncio
    async def test_post_requires_key(self):
        client, _ = _make_test_client(_build_api_config(api_key="secret123"))
        async with client:
            assert (await client.post("/tx/nft/mint", json={"from": 1})).status == 401
            resp = await client.post(
                "/tx/nft/mint", json={"from": 1}, headers={"X-API-Key": "wrong"},
            )
            assert resp.status == 401
            resp = await client.post(
                "/tx/nft/mint", json={"from": 1}, headers={"X-API-Key": "secret123"},
            )
            assert resp.status == 200

    @pytest.mark.asyncio
    async def test_rate_limit(self):
        client, _ = _make_test_client(_build_api_config(rate_limit_rpm=2))
        async with client:
            assert (await client.get("/health")).status == 200
            assert (await client.get("/health")).status == 200
            resp = await client.get("/health")
            assert resp.status == 429
            assert resp.headers["Retry-After"] == "5"

    @pytest.mark.asyncio
    async def test_cors_allowed_origin(self):
        cfg = _build_api_config(cors_origins=["http://localhost:3000", "*"])
        client, _ = _make_test_client(cfg)
        async with client:
            resp = await client.get("/health", headers={"Origin": "http://localhost:3000"})
            assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:3000"
            resp = await client.get("/health", headers={"Origin": "http://evil.test"})
            assert "Access-Control-Allow-Origin" not in resp.headers
            preflight = await client.options("/tx/nft/mint", headers={"Origin": "http://localhost:3000"})
            assert preflight.status == 204

    @pytest.mark.asyncio
    async def test_body_size_limit(self):
        client, _ = _make_test_client(_build_api_config(max_body_bytes=64))
        async with client:
            resp = await client.post("/tx/withdraw", json={"from": 1, "pad": "x" * 200})
            assert resp.status == 413
