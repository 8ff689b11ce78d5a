"""
REST / HTTP API server for an NFTMarket devnet.

Built on ``aiohttp``.  Transactions are sent from the devnet's unlocked
accounts, selected by index or address in the ``from`` field.  Amounts
in request bodies are decimal ether strings; amounts in responses are
wei, as strings once they exceed the JSON-safe integer range.

Endpoints
---------
GET  /health                  Liveness and chain head
GET  /status                  Chain & marketplace summary
GET  /accounts                Unlocked accounts with balances
GET  /balance/{address}       Ether balance (wei)
GET  /auctions                All auctions
GET  /auction/{auction_id}    One auction
GET  /pending/{address}       Withdrawable marketplace balance
GET  /nft/{token_id}          Token owner / approval / URI
GET  /tx/{tx_hash}            Transaction receipt
GET  /events                  Logs, filtered by ?name= and ?address=
POST /tx/nft/mint             {"from", "value"?}
POST /tx/nft/approve          {"from", "token_id"}
POST /tx/auction/create       {"from", "token_id", "starting_price", "end_time" | "duration"}
POST /tx/auction/bid          {"from", "auction_id", "amount"}
POST /tx/auction/end          {"from", "auction_id"}
POST /tx/auction/cancel       {"from", "auction_id"}
POST /tx/withdraw             {"from"}
POST /evm/increase_time       {"seconds"}
POST /evm/mine                {"blocks"?}

A contract revert answers ``400 {"error": "reverted", "reason": ...}``.

Security
--------
- API-key authentication on POST endpoints via ``X-API-Key`` header only.
  Timing-safe comparison via ``hmac.compare_digest``.
- Per-IP token-bucket rate limiter (configurable RPM).
- CORS middleware (origins configurable via ``cors_origins``).
- Request body size cap (``max_body_bytes``, default 1 MiB).

Usage:
    api = APIServer(devnet, host="127.0.0.1", port=8545)
    await api.start()    # call inside existing event loop
    ...
    await api.stop()
"""

from __future__ import annotations

import hmac
import json
import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from aiohttp import web

from nftmarket_core.errors import InvariantViolation, Revert, UnknownAccount
from nftmarket_core.units import parse_ether

if TYPE_CHECKING:
    from nftmarket_core.config import APIConfig
    from nftmarket_core.devnet import Devnet

logger = logging.getLogger("nftmarket_api")

_MAX_SAFE_INT = 2 ** 53 - 1
_BUCKET_IDLE_SECONDS = 60.0


# ═══════════════════════════════════════════════════════════════════
#  Input helpers
# ═══════════════════════════════════════════════════════════════════

def _safe_int(value: Any, name: str = "value", minimum: int = 0) -> int:
    """Convert *value* to a non-negative int, rejecting floats and junk."""
    if isinstance(value, bool) or isinstance(value, float):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")
    try:
        result = int(value)
    except (TypeError, ValueError):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")
    if result < minimum:
        raise web.HTTPBadRequest(text=f"{name} must be >= {minimum}")
    return result


def _ether(value: Any, name: str = "amount") -> int:
    """Convert a decimal ether amount to wei."""
    if value is None or isinstance(value, bool):
        raise web.HTTPBadRequest(text=f"{name} is required")
    try:
        return parse_ether(value)
    except ValueError:
        raise web.HTTPBadRequest(text=f"{name} must be a non-negative ether amount")


async def _json_body(request: web.Request) -> dict:
    try:
        body = await request.json()
    except ValueError as exc:
        raise web.HTTPBadRequest(text="Invalid JSON body") from exc
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return body


def _wei_safe(obj: Any) -> Any:
    """Stringify integers JavaScript clients cannot represent exactly."""
    if isinstance(obj, bool):
        return obj
    if isinstance(obj, int) and abs(obj) > _MAX_SAFE_INT:
        return str(obj)
    if isinstance(obj, dict):
        return {k: _wei_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_wei_safe(v) for v in obj]
    return obj


def _json_dumps(obj: Any) -> str:
    """JSON serialiser that handles wei amounts and non-standard types."""
    return json.dumps(_wei_safe(obj), default=str)


def _json(data: Any, status: int = 200) -> web.Response:
    return web.json_response(data, status=status, dumps=_json_dumps)


# ═══════════════════════════════════════════════════════════════════
#  Rate Limiter (per-IP token bucket)
# ═══════════════════════════════════════════════════════════════════

class _TokenBucket:
    """Simple per-IP token-bucket rate limiter."""

    __slots__ = ("_buckets", "_last_prune", "_rpm")

    def __init__(self, rpm: int):
        self._rpm = rpm  # 0 = unlimited
        # ip -> (tokens, last_refill_timestamp)
        self._buckets: dict[str, list[float]] = defaultdict(lambda: [float(rpm), time.monotonic()])
        self._last_prune = time.monotonic()

    def allow(self, ip: str) -> bool:
        if self._rpm <= 0:
            return True
        now = time.monotonic()
        if now - self._last_prune >= _BUCKET_IDLE_SECONDS:
            self._prune(now)
        bucket = self._buckets[ip]
        elapsed = now - bucket[1]
        bucket[0] = min(float(self._rpm), bucket[0] + elapsed * (self._rpm / 60.0))
        bucket[1] = now
        if bucket[0] >= 1.0:
            bucket[0] -= 1.0
            return True
        return False

    def _prune(self, now: float) -> None:
        # an idle bucket has refilled completely, same as a fresh one
        idle = [ip for ip, (_, last) in self._buckets.items() if now - last >= _BUCKET_IDLE_SECONDS]
        for ip in idle:
            del self._buckets[ip]
        self._last_prune = now


# ═══════════════════════════════════════════════════════════════════
#  Middleware factories
# ═══════════════════════════════════════════════════════════════════

def _make_rate_limit_middleware(bucket: _TokenBucket):
    """aiohttp middleware that enforces per-IP rate limits."""

    @web.middleware
    async def rate_limit_middleware(request: web.Request, handler):
        ip = request.remote or "unknown"
        if not bucket.allow(ip):
            raise web.HTTPTooManyRequests(
                text="Rate limit exceeded. Try again later.",
                headers={"Retry-After": "5"},
            )
        return await handler(request)

    return rate_limit_middleware


def _make_api_key_middleware(api_key: str):
    """aiohttp middleware that requires an API key on POST/PUT/DELETE."""

    @web.middleware
    async def api_key_middleware(request: web.Request, handler):
        if request.method in ("POST", "PUT", "DELETE"):
            key = request.headers.get("X-API-Key", "")
            if not hmac.compare_digest(key, api_key):
                raise web.HTTPUnauthorized(text="Invalid or missing API key")
        return await handler(request)

    return api_key_middleware


def _make_cors_middleware(origins: list[str]):
    """aiohttp middleware that adds CORS headers for explicitly listed origins."""

    allowed = set(origins) if origins else set()
    allowed.discard("*")

    @web.middleware
    async def cors_middleware(request: web.Request, handler):
        origin = request.headers.get("Origin", "")
        if request.method == "OPTIONS":
            resp = web.Response(status=204)
        else:
            resp = await handler(request)

        if origin in allowed:
            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = "Content-Type, X-API-Key"
            resp.headers["Access-Control-Max-Age"] = "3600"
        return resp

    return cors_middleware


@web.middleware
async def chain_error_middleware(request: web.Request, handler):
    """Map chain exceptions to JSON error responses."""
    try:
        return await handler(request)
    except Revert as exc:
        return _json({"error": "reverted", "reason": exc.reason}, status=400)
    except UnknownAccount as exc:
        return _json({"error": "unknown_account", "reason": str(exc)}, status=404)
    except InvariantViolation as exc:
        logger.error(f"Invariant violation on {request.path}: {exc}")
        return _json({"error": "invariant_violation", "reason": exc.errors}, status=500)


def build_middlewares(cfg: APIConfig | None) -> tuple[list, int]:
    """Middleware stack and body-size cap for *cfg*."""
    middlewares: list = []
    max_body = 1_048_576
    if cfg is not None:
        max_body = cfg.max_body_bytes
        if cfg.rate_limit_rpm > 0:
            middlewares.append(_make_rate_limit_middleware(_TokenBucket(cfg.rate_limit_rpm)))
        if cfg.cors_origins:
            middlewares.append(_make_cors_middleware(cfg.cors_origins))
        if cfg.api_key:
            middlewares.append(_make_api_key_middleware(cfg.api_key))
    middlewares.append(chain_error_middleware)
    return middlewares, max_body


class APIServer:
    """Thin aiohttp wrapper around a running Devnet."""

    def __init__(
        self,
        devnet: Devnet,
        host: str = "127.0.0.1",
        port: int = 8545,
        *,
        api_config: APIConfig | None = None,
    ):
        self.devnet = devnet
        self.host = host
        self.port = port
        self._api_config = api_config
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    # ── lifecycle ────────────────────────────────────────────────

    def make_app(self) -> web.Application:
        middlewares, max_body = build_middlewares(self._api_config)
        app = web.Application(middlewares=middlewares, client_max_size=max_body)
        self._register_routes(app)
        self._app = app
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.make_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()

    # ── routes ───────────────────────────────────────────────────

    def _register_routes(self, app: web.Application) -> None:
        app.router.add_get("/health", self._health)
        app.router.add_get("/status", self._status)
        app.router.add_get("/accounts", self._accounts)
        app.router.add_get("/balance/{address}", self._balance)
        app.router.add_get("/auctions", self._auctions)
        app.router.add_get("/auction/{auction_id}", self._auction)
        app.router.add_get("/pending/{address}", self._pending)
        app.router.add_get("/nft/{token_id}", self._nft)
        app.router.add_get("/tx/{tx_hash}", self._get_transaction)
        app.router.add_get("/events", self._events)

        app.router.add_post("/tx/nft/mint", self._submit_mint)
        app.router.add_post("/tx/nft/approve", self._submit_approve)
        app.router.add_post("/tx/auction/create", self._submit_create_auction)
        app.router.add_post("/tx/auction/bid", self._submit_bid)
        app.router.add_post("/tx/auction/end", self._submit_end_auction)
        app.router.add_post("/tx/auction/cancel", self._submit_cancel_auction)
        app.router.add_post("/tx/withdraw", self._submit_withdraw)

        app.router.add_post("/evm/increase_time", self._increase_time)
        app.router.add_post("/evm/mine", self._mine)

    # ── queries ──────────────────────────────────────────────────

    async def _health(self, _request: web.Request) -> web.Response:
        chain = self.devnet.chain
        return _json({
            "ok": True,
            "block_number": chain.block.number,
            "timestamp": chain.block.timestamp,
        })

    async def _status(self, _request: web.Request) -> web.Response:
        return _json(self.devnet.status())

    async def _accounts(self, _request: web.Request) -> web.Response:
        chain = self.devnet.chain
        return _json([
            {"index": i, "address": acc.address, "balance": chain.get_balance(acc)}
            for i, acc in enumerate(chain.accounts)
        ])

    async def _balance(self, request: web.Request) -> web.Response:
        address = self.devnet.chain.resolve(request.match_info["address"])
        return _json({"address": address, "balance": self.devnet.chain.get_balance(address)})

    async def _auctions(self, _request: web.Request) -> web.Response:
        return _json(self.devnet.auctions())

    async def _auction(self, request: web.Request) -> web.Response:
        auction_id = _safe_int(request.match_info["auction_id"], "auction_id")
        if auction_id >= self.devnet.marketplace.auctionCount():
            raise web.HTTPNotFound(text=f"Auction {auction_id} not found")
        return _json(self.devnet.marketplace.getAuction(auction_id).to_dict())

    async def _pending(self, request: web.Request) -> web.Response:
        address = self.devnet.chain.resolve(request.match_info["address"])
        return _json({
            "address": address,
            "pending": self.devnet.marketplace.pendingReturns(address),
        })

    async def _nft(self, request: web.Request) -> web.Response:
        token_id = _safe_int(request.match_info["token_id"], "token_id", minimum=1)
        try:
            return _json(self.devnet.token_info(token_id))
        except Revert as exc:
            raise web.HTTPNotFound(text=exc.reason) from exc

    async def _get_transaction(self, request: web.Request) -> web.Response:
        receipt = self.devnet.chain.get_receipt(request.match_info["tx_hash"])
        if receipt is None:
            raise web.HTTPNotFound(text="Transaction not found")
        return _json(receipt.to_dict())

    async def _events(self, request: web.Request) -> web.Response:
        name = request.query.get("name") or None
        address = request.query.get("address") or None
        events = self.devnet.chain.get_logs(name=name, address=address)
        return _json([e.to_dict() for e in events])

    # ── transactions ─────────────────────────────────────────────

    async def _submit_mint(self, request: web.Request) -> web.Response:
        """
        POST /tx/nft/mint
        Body: {"from": 1, "value": "0.5"}
        """
        body = await _json_body(request)
        value = _ether(body["value"], "value") if "value" in body else None
        receipt = self.devnet.mint(body.get("from", 0), value)
        return _json({"status": "mined", "token_id": receipt.return_value, "receipt": receipt.to_dict()})

    async def _submit_approve(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        token_id = _safe_int(body.get("token_id"), "token_id", minimum=1)
        receipt = self.devnet.approve(body.get("from", 0), token_id)
        return _json({"status": "mined", "receipt": receipt.to_dict()})

    async def _submit_create_auction(self, request: web.Request) -> web.Response:
        """
        POST /tx/auction/create
        Body: {"from": 1, "token_id": 1, "starting_price": "1", "duration": 3600}
        """
        body = await _json_body(request)
        token_id = _safe_int(body.get("token_id"), "token_id", minimum=1)
        starting_price = _ether(body.get("starting_price"), "starting_price")
        if "end_time" in body:
            end_time = _safe_int(body["end_time"], "end_time")
        elif "duration" in body:
            # measured from the block the create transaction lands in
            duration = _safe_int(body["duration"], "duration", minimum=1)
            end_time = self.devnet.chain.next_block_timestamp() + duration
        else:
            raise web.HTTPBadRequest(text="end_time or duration required")
        receipt = self.devnet.create_auction(body.get("from", 0), token_id, starting_price, end_time)
        return _json({
            "status": "mined",
            "auction_id": receipt.return_value,
            "receipt": receipt.to_dict(),
        })

    async def _submit_bid(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        auction_id = _safe_int(body.get("auction_id"), "auction_id")
        amount = _ether(body.get("amount"), "amount")
        receipt = self.devnet.bid(body.get("from", 0), auction_id, amount)
        return _json({"status": "mined", "receipt": receipt.to_dict()})

    async def _submit_end_auction(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        auction_id = _safe_int(body.get("auction_id"), "auction_id")
        receipt = self.devnet.end_auction(body.get("from", 0), auction_id)
        return _json({"status": "mined", "winner": receipt.return_value, "receipt": receipt.to_dict()})

    async def _submit_cancel_auction(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        auction_id = _safe_int(body.get("auction_id"), "auction_id")
        receipt = self.devnet.cancel_auction(body.get("from", 0), auction_id)
        return _json({"status": "mined", "receipt": receipt.to_dict()})

    async def _submit_withdraw(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        receipt = self.devnet.withdraw(body.get("from", 0))
        return _json({"status": "mined", "amount": receipt.return_value, "receipt": receipt.to_dict()})

    # ── chain control ────────────────────────────────────────────

    async def _increase_time(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        seconds = _safe_int(body.get("seconds"), "seconds")
        pending = self.devnet.chain.increase_time(seconds)
        return _json({"pending_increase": pending, "time": self.devnet.chain.time()})

    async def _mine(self, request: web.Request) -> web.Response:
        body = await _json_body(request) if request.can_read_body else {}
        blocks = _safe_int(body.get("blocks", 1), "blocks", minimum=1)
        block = self.devnet.chain.mine(blocks)
        return _json({"block_number": block.number, "timestamp": block.timestamp})
