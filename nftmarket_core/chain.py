"""
In-process blockchain simulator for NFTMarket.

Provides the execution environment the marketplace contracts run in:

  - Deterministic, pre-funded accounts (hardhat-style ``accounts[i]``)
  - Integer wei balances and per-account nonces
  - One block per transaction, with controllable block time
    (``increase_time`` / ``mine`` / ``set_next_block_timestamp``)
  - Atomic transactions: a ``Revert`` anywhere in the call tree restores
    balances, nonces, contract storage, block and logs
  - Snapshots (``evm_snapshot`` / ``evm_revert``) for test isolation
  - Event logs and receipts

Usage:
    chain = Chain()
    deployer, alice = chain.accounts[0], chain.accounts[1]
    nft = deployer.deploy(GHLocaleNFT)
    nft.connect(alice).mint(value=parse_ether("0.5"))
    chain.increase_time(5 * 24 * 60 * 60)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from nftmarket_core.account import Account
from nftmarket_core.contract import Contract, to_arg
from nftmarket_core.crypto_utils import contract_address, is_address, to_checksum_address, tx_hash
from nftmarket_core.errors import ChainError, InvariantViolation, Revert, SnapshotError, UnknownAccount
from nftmarket_core.events import Event, EventDict, TxReceipt
from nftmarket_core.invariants import InvariantChecker
from nftmarket_core.units import WEI_PER_ETHER, format_amount, parse_ether
from nftmarket_core.wallet import Wallet

if TYPE_CHECKING:
    from nftmarket_core.config import ChainConfig

logger = logging.getLogger("nftmarket_chain")

DEFAULT_SEED = "test test test test test test test test test test test junk"
DEFAULT_CHAIN_ID = 31337
DEFAULT_ACCOUNTS = 10
DEFAULT_BALANCE = 10_000 * WEI_PER_ETHER


@dataclass(frozen=True)
class Block:
    """Header fields visible to contracts as ``block``."""
    number: int
    timestamp: int


@dataclass(frozen=True)
class Frame:
    """One level of the call stack."""
    sender: str
    value: int
    contract: str


class Chain:
    """A single-node, instantly-mined chain."""

    def __init__(
        self,
        chain_id: int = DEFAULT_CHAIN_ID,
        accounts: int = DEFAULT_ACCOUNTS,
        initial_balance: int = DEFAULT_BALANCE,
        block_time: int = 1,
        genesis_timestamp: int | None = None,
        seed: str = DEFAULT_SEED,
        check_invariants: bool = True,
    ):
        if block_time < 0:
            raise ValueError("block_time must be >= 0")
        self.chain_id = chain_id
        self.block_time = block_time
        self.block = Block(0, genesis_timestamp if genesis_timestamp else int(time.time()))

        self.balances: dict[str, int] = {}
        self.nonces: dict[str, int] = {}
        self.contracts: dict[str, Contract] = {}
        self.receipts: dict[str, TxReceipt] = {}
        self.logs: list[Event] = []
        self.last_receipt: TxReceipt | None = None
        self.total_supply = 0

        self._pending_increase = 0
        self._next_timestamp: int | None = None
        self._frames: list[Frame] = []
        self._tx_events: list[Event] | None = None
        self._tx_hash = ""
        self._snapshots: dict[int, dict] = {}
        self._next_snapshot_id = 1
        self.invariants: InvariantChecker | None = InvariantChecker() if check_invariants else None

        self.accounts: list[Account] = []
        for i in range(accounts):
            acc = Account(Wallet.from_seed(f"{seed}/{i}"), self)
            self.accounts.append(acc)
            self.balances[acc.address] = initial_balance
            self.nonces[acc.address] = 0
            self.total_supply += initial_balance
        logger.info(
            f"Chain {chain_id} started: {accounts} accounts x "
            f"{format_amount(initial_balance)}, genesis ts {self.block.timestamp}"
        )

    @classmethod
    def from_config(cls, cfg: ChainConfig) -> Chain:
        return cls(
            chain_id=cfg.chain_id,
            accounts=cfg.accounts,
            initial_balance=parse_ether(cfg.initial_balance),
            block_time=cfg.block_time,
            genesis_timestamp=cfg.genesis_timestamp or None,
            seed=cfg.seed,
            check_invariants=cfg.check_invariants,
        )

    # ── addresses & state queries ───────────────────────────────

    def resolve(self, who: Any) -> str:
        """Address of an account, contract or address string."""
        address = to_arg(who)
        if not is_address(address):
            raise UnknownAccount(f"not an address: {who!r}")
        return to_checksum_address(address)

    @property
    def default_sender(self) -> str:
        if not self.accounts:
            raise UnknownAccount("chain has no unlocked accounts")
        return self.accounts[0].address

    def get_balance(self, who: Any) -> int:
        return self.balances.get(self.resolve(who), 0)

    def get_nonce(self, who: Any) -> int:
        return self.nonces.get(self.resolve(who), 0)

    def get_contract(self, who: Any) -> Contract | None:
        return self.contracts.get(self.resolve(who))

    def is_contract(self, who: Any) -> bool:
        return self.resolve(who) in self.contracts

    def account(self, who: Any) -> Account:
        """Look up an unlocked account by index or address."""
        if isinstance(who, int) and not isinstance(who, bool):
            if not 0 <= who < len(self.accounts):
                raise UnknownAccount(f"no account at index {who}")
            return self.accounts[who]
        address = self.resolve(who)
        for acc in self.accounts:
            if acc.address == address:
                return acc
        raise UnknownAccount(f"{address} is not an unlocked account")

    @property
    def current_frame(self) -> Frame:
        if not self._frames:
            raise ChainError("no active call frame")
        return self._frames[-1]

    # ── time & blocks ───────────────────────────────────────────

    def time(self) -> int:
        """Current chain time: latest block timestamp plus pending increases."""
        if self._next_timestamp is not None:
            return self._next_timestamp
        return self.block.timestamp + self._pending_increase

    def increase_time(self, seconds: int) -> int:
        """Advance the clock for the next mined block; returns the pending offset."""
        if seconds < 0:
            raise ValueError("cannot decrease time")
        self._pending_increase += int(seconds)
        logger.debug(f"Time increased by {seconds}s (pending {self._pending_increase}s)")
        return self._pending_increase

    def set_next_block_timestamp(self, timestamp: int) -> None:
        if timestamp <= self.block.timestamp:
            raise ValueError(
                f"timestamp {timestamp} is not after current block timestamp {self.block.timestamp}"
            )
        self._next_timestamp = int(timestamp)

    def mine(self, blocks: int = 1, timestamp: int | None = None) -> Block:
        """Mine *blocks* empty blocks; *timestamp* fixes the first one."""
        if blocks < 1:
            raise ValueError("blocks must be >= 1")
        if timestamp is not None:
            self.set_next_block_timestamp(timestamp)
        for _ in range(blocks):
            self._mine_block()
        return self.block

    def next_block_timestamp(self) -> int:
        """Timestamp the next mined block (and so the next transaction) will carry."""
        if self._next_timestamp is not None:
            return self._next_timestamp
        return self.block.timestamp + self.block_time + self._pending_increase

    def _mine_block(self) -> None:
        ts = self.next_block_timestamp()
        self._next_timestamp = None
        self._pending_increase = 0
        self.block = Block(self.block.number + 1, ts)

    # ── snapshots ───────────────────────────────────────────────

    def _capture(self) -> dict:
        return {
            "balances": dict(self.balances),
            "nonces": dict(self.nonces),
            "contracts": dict(self.contracts),
            "storage": {addr: c._export_state() for addr, c in self.contracts.items()},
            "block": self.block,
            "pending_increase": self._pending_increase,
            "next_timestamp": self._next_timestamp,
            "receipts": dict(self.receipts),
            "logs_len": len(self.logs),
            "last_receipt": self.last_receipt,
            "total_supply": self.total_supply,
        }

    def _restore(self, state: dict) -> None:
        self.balances = dict(state["balances"])
        self.nonces = dict(state["nonces"])
        self.contracts = dict(state["contracts"])
        for addr, contract in self.contracts.items():
            contract._import_state(state["storage"][addr])
        self.block = state["block"]
        self._pending_increase = state["pending_increase"]
        self._next_timestamp = state["next_timestamp"]
        self.receipts = dict(state["receipts"])
        del self.logs[state["logs_len"]:]
        self.last_receipt = state["last_receipt"]
        self.total_supply = state["total_supply"]

    def snapshot(self) -> int:
        """Save the full chain state; returns an id for :meth:`revert`."""
        snap_id = self._next_snapshot_id
        self._next_snapshot_id += 1
        self._snapshots[snap_id] = self._capture()
        return snap_id

    def revert(self, snapshot_id: int) -> bool:
        """Restore a snapshot.  It and every later snapshot are consumed."""
        state = self._snapshots.get(snapshot_id)
        if state is None:
            raise SnapshotError(f"unknown snapshot {snapshot_id}")
        self._restore(state)
        for sid in [s for s in self._snapshots if s >= snapshot_id]:
            del self._snapshots[sid]
        logger.debug(f"Reverted to snapshot {snapshot_id} (block {self.block.number})")
        return True

    # ── value movement ──────────────────────────────────────────

    def _move_value(self, frm: str, to: str, amount: int) -> None:
        if amount == 0:
            return
        if amount < 0:
            raise Revert("Negative value")
        available = self.balances.get(frm, 0)
        if available < amount:
            raise Revert("Insufficient balance")
        self.balances[frm] = available - amount
        self.balances[to] = self.balances.get(to, 0) + amount

    def set_balance(self, who: Any, amount: int) -> None:
        """Overwrite a balance (``hardhat_setBalance``); adjusts total supply."""
        if amount < 0:
            raise ValueError("balance must be >= 0")
        address = self.resolve(who)
        self.total_supply += amount - self.balances.get(address, 0)
        self.balances[address] = amount
        self.nonces.setdefault(address, 0)

    def send_value(self, frm: str, to: str, amount: int) -> None:
        """Move wei, running ``receive`` when the recipient is a contract."""
        to = self.resolve(to)
        if to in self.contracts:
            self._execute(frm, to, "receive", (), amount)
        else:
            self._move_value(frm, to, amount)

    # ── execution ───────────────────────────────────────────────

    def emit(self, address: str, name: str, args: dict) -> None:
        if self._tx_events is None:
            raise ChainError(f"event {name} emitted outside a transaction")
        self._tx_events.append(Event(
            name=name,
            address=address,
            args=args,
            log_index=len(self.logs) + len(self._tx_events),
            block_number=self.block.number,
            tx_hash=self._tx_hash,
        ))

    def _execute(self, sender: str, target: str, function: str, args: tuple, value: int) -> Any:
        contract = self.contracts.get(target)
        if contract is None:
            if function == "receive":
                raise Revert("Contract cannot receive ether")
            raise Revert("Call to non-contract")
        fn_abi = contract.abi_function(function)
        if fn_abi is None:
            if function == "receive":
                raise Revert("Contract cannot receive ether")
            raise Revert(f"Function '{function}' not found")
        if value and not fn_abi.payable:
            raise Revert("Function is not payable")
        self._move_value(sender, target, value)
        self._frames.append(Frame(sender=sender, value=value, contract=target))
        try:
            return getattr(contract, fn_abi.py_name)(*args)
        finally:
            self._frames.pop()

    def internal_call(self, caller: str, target: Any, function: str, args: tuple, value: int = 0) -> Any:
        """Contract-to-contract call inside the current transaction."""
        try:
            target_addr = self.resolve(target)
        except UnknownAccount as exc:
            raise Revert("Call to non-contract") from exc
        return self._execute(caller, target_addr, function, args, value)

    def _run_transaction(
        self,
        sender: Any,
        to: str,
        label: str,
        args: tuple,
        value: int,
        body: Callable[[str], Any],
    ) -> TxReceipt:
        sender_addr = self.resolve(sender if sender is not None else self.default_sender)
        if sender_addr in self.contracts:
            raise ChainError("contracts cannot originate transactions")
        saved = self._capture()
        nonce = self.nonces.get(sender_addr, 0)
        self.nonces[sender_addr] = nonce + 1
        self._mine_block()
        h = tx_hash(sender_addr, nonce, to, label, value)
        self._tx_hash = h
        self._tx_events = []
        if self.invariants is not None:
            self.invariants.capture(self)
        try:
            result = body(sender_addr)
            if self.invariants is not None:
                ok, errors = self.invariants.verify(self)
                if not ok:
                    raise InvariantViolation(errors)
            events = self._tx_events
        except Exception as exc:
            self._restore(saved)
            reason = exc.reason if isinstance(exc, Revert) else str(exc)
            logger.debug(f"Transaction {label} from {sender_addr} reverted: {reason}")
            raise
        finally:
            self._tx_events = None
            self._tx_hash = ""
            self._frames.clear()

        receipt = TxReceipt(
            tx_hash=h,
            sender=sender_addr,
            to=to,
            function=label,
            args=args,
            value=value,
            nonce=nonce,
            block_number=self.block.number,
            timestamp=self.block.timestamp,
            events=EventDict(events),
            return_value=result,
        )
        self.receipts[h] = receipt
        self.logs.extend(events)
        self.last_receipt = receipt
        logger.info(
            f"Block {self.block.number} tx {h[:10]} {label} from {sender_addr[:10]} "
            f"value={value} events={receipt.events.names()}"
        )
        return receipt

    def transact(
        self, sender: Any, target: Any, function: str, args: tuple = (), value: int = 0,
    ) -> TxReceipt:
        """Send a state-changing call to *function* on *target*."""
        target_addr = self.resolve(target)
        return self._run_transaction(
            sender, target_addr, function, args, value,
            lambda frm: self._execute(frm, target_addr, function, args, value),
        )

    def transfer(self, sender: Any, to: Any, amount: int) -> TxReceipt:
        """Plain ether transfer from an account."""
        to_addr = self.resolve(to)
        return self._run_transaction(
            sender, to_addr, "transfer", (), amount,
            lambda frm: self.send_value(frm, to_addr, amount),
        )

    def static_call(
        self, sender: Any, target: Any, function: str, args: tuple = (), value: int = 0,
    ) -> Any:
        """``eth_call``: execute without mining and discard every state change."""
        sender_addr = self.resolve(sender if sender is not None else self.default_sender)
        target_addr = self.resolve(target)
        contract = self.contracts.get(target_addr)
        fn_abi = contract.abi_function(function) if contract is not None else None
        depth = len(self._frames)
        if fn_abi is not None and fn_abi.view and not value:
            # views cannot write, so no snapshot is needed
            try:
                return self._execute(sender_addr, target_addr, function, args, 0)
            finally:
                del self._frames[depth:]
        saved = self._capture()
        outer_events = self._tx_events
        self._tx_events = []
        try:
            return self._execute(sender_addr, target_addr, function, args, value)
        finally:
            self._restore(saved)
            self._tx_events = outer_events
            del self._frames[depth:]

    def deploy(self, contract_cls: type[Contract], *args: Any, sender: Any = None, value: int = 0) -> Contract:
        """Create a contract; the constructor runs inside a transaction."""
        sender_addr = self.resolve(sender if sender is not None else self.default_sender)
        address = contract_address(sender_addr, self.nonces.get(sender_addr, 0))
        ctor_args = tuple(to_arg(a) for a in args)
        instance = contract_cls.__new__(contract_cls)
        instance._attach(self, address)

        def construct(frm: str) -> Contract:
            self.contracts[address] = instance
            self.balances.setdefault(address, 0)
            self.nonces.setdefault(address, 0)
            self._move_value(frm, address, value)
            self._frames.append(Frame(sender=frm, value=value, contract=address))
            try:
                instance.__init__(*ctor_args)
            finally:
                self._frames.pop()
            return instance

        self._run_transaction(sender_addr, address, f"deploy:{contract_cls.__name__}", ctor_args, value, construct)
        logger.info(f"Deployed {contract_cls.__name__} at {address}")
        return instance

    # ── logs ────────────────────────────────────────────────────

    def get_logs(self, name: str | None = None, address: Any = None) -> list[Event]:
        addr = self.resolve(address) if address is not None else None
        return [
            e for e in self.logs
            if (name is None or e.name == name) and (addr is None or e.address == addr)
        ]

    def get_receipt(self, h: str) -> TxReceipt | None:
        return self.receipts.get(h)

    # ── JSON-RPC style control ──────────────────────────────────

    def rpc(self, method: str, params: list | None = None) -> Any:
        """Dispatch a hardhat-style RPC call (``provider.send``)."""
        params = list(params or [])
        if method == "evm_increaseTime":
            return self.increase_time(int(params[0]))
        if method == "evm_mine":
            self.mine(timestamp=int(params[0]) if params else None)
            return "0x0"
        if method == "evm_setNextBlockTimestamp":
            self.set_next_block_timestamp(int(params[0]))
            return None
        if method == "evm_snapshot":
            return self.snapshot()
        if method == "evm_revert":
            try:
                return self.revert(int(params[0]))
            except SnapshotError:
                return False
        if method == "eth_blockNumber":
            return self.block.number
        if method == "eth_chainId":
            return self.chain_id
        if method == "eth_getBalance":
            return self.get_balance(params[0])
        if method == "eth_accounts":
            return [a.address for a in self.accounts]
        if method == "hardhat_setBalance":
            self.set_balance(params[0], int(params[1]))
            return True
        raise ChainError(f"unsupported RPC method: {method}")

    def status(self) -> dict:
        return {
            "chain_id": self.chain_id,
            "block_number": self.block.number,
            "timestamp": self.block.timestamp,
            "accounts": len(self.accounts),
            "contracts": len(self.contracts),
            "transactions": len(self.receipts),
            "logs": len(self.logs),
        }

    def __repr__(self) -> str:
        return f"Chain(id={self.chain_id}, block={self.block.number})"
