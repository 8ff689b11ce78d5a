"""
Contract runtime for the NFTMarket chain simulator.

Contracts are plain Python classes deriving from :class:`Contract`.  A
method becomes callable from outside (and from other contracts) once it
is exported with :func:`external` under its ABI name::

    class Counter(Contract):
        def __init__(self):
            super().__init__()
            self.total = 0

        @external("increment")
        def add(self, by: int) -> int:
            require(by > 0, "Zero increment")
            self.total += by
            self.emit("Incremented", by=by, total=self.total)
            return self.total

        @external("count", view=True)
        def get_count(self) -> int:
            return self.total

The Python method name must differ from its ABI name so that
``counter.increment(3)`` always goes through the chain; storage
attributes must not reuse ABI names either.

Inside a call ``self.msg.sender`` / ``self.msg.value`` describe the
current call frame and ``self.block`` the block being executed.  All
attributes other than ``chain`` and ``address`` are contract storage and
are rolled back together with balances when a transaction reverts.
"""

from __future__ import annotations

import copy
import functools
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from nftmarket_core.crypto_utils import is_address, to_checksum_address
from nftmarket_core.errors import Revert

if TYPE_CHECKING:
    from nftmarket_core.chain import Block, Chain

# Attributes that belong to the runtime, not to contract storage.
_RUNTIME_ATTRS = frozenset({"chain", "address"})


@dataclass(frozen=True)
class AbiFunction:
    """Exported entry point of a contract."""
    name: str               # ABI name, e.g. "createAuction"
    py_name: str            # Python method implementing it
    payable: bool = False
    view: bool = False

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "stateMutability": "view" if self.view else ("payable" if self.payable else "nonpayable"),
        }


@dataclass(frozen=True)
class Msg:
    """The ``msg`` global of the current call frame."""
    sender: str
    value: int


def external(abi_name: str, *, payable: bool = False, view: bool = False):
    """Export a contract method under *abi_name*."""
    if payable and view:
        raise ValueError("a function cannot be both payable and view")

    def decorator(fn: Callable) -> Callable:
        fn.__abi__ = AbiFunction(  # type: ignore[attr-defined]
            name=abi_name,
            py_name=fn.__name__,
            payable=payable,
            view=view,
        )
        return fn

    return decorator


def require(condition: Any, reason: str = "") -> None:
    """Revert the enclosing transaction with *reason* unless *condition* holds."""
    if not condition:
        raise Revert(reason)


def non_reentrant(fn: Callable) -> Callable:
    """Reject nested entry into any ``non_reentrant`` method of the same contract."""

    @functools.wraps(fn)
    def wrapper(self: Contract, *args: Any, **kwargs: Any) -> Any:
        require(not self._entered, "ReentrancyGuard: reentrant call")
        self._entered = True
        try:
            return fn(self, *args, **kwargs)
        finally:
            self._entered = False

    return wrapper


def to_arg(value: Any) -> Any:
    """Normalise a call argument: accounts and contracts become addresses."""
    address = getattr(value, "address", None)
    if isinstance(address, str) and not isinstance(value, str):
        return address
    if is_address(value):
        return to_checksum_address(value)
    return value


class Contract:
    """Base class for every simulated contract."""

    _abi: dict[str, AbiFunction] = {}

    # set by Chain.deploy before __init__ runs
    chain: Chain
    address: str

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        abi: dict[str, AbiFunction] = {}
        for klass in reversed(cls.__mro__):
            for attr in vars(klass).values():
                fn_abi = getattr(attr, "__abi__", None)
                if isinstance(fn_abi, AbiFunction):
                    if fn_abi.name == fn_abi.py_name:
                        raise TypeError(
                            f"{cls.__name__}.{fn_abi.py_name} shadows its ABI name; rename the method"
                        )
                    abi[fn_abi.name] = fn_abi
        cls._abi = abi

    def __init__(self) -> None:
        self.owner: str = self.msg.sender
        self._entered = False

    def _attach(self, chain: Chain, address: str) -> None:
        self.chain = chain
        self.address = address

    # ── execution context ───────────────────────────────────────

    @property
    def msg(self) -> Msg:
        frame = self.chain.current_frame
        return Msg(sender=frame.sender, value=frame.value)

    @property
    def block(self) -> Block:
        return self.chain.block

    @property
    def balance(self) -> int:
        return self.chain.get_balance(self.address)

    def emit(self, name: str, **args: Any) -> None:
        self.chain.emit(self.address, name, {k: to_arg(v) for k, v in args.items()})

    def call(self, target: Any, function: str, *args: Any, value: int = 0) -> Any:
        """Call *function* on another contract with ``msg.sender == self``."""
        return self.chain.internal_call(
            self.address, to_arg(target), function, tuple(to_arg(a) for a in args), value,
        )

    def send_value(self, to: str, amount: int) -> None:
        """Send wei from this contract, running the recipient's ``receive`` if any."""
        self.chain.send_value(self.address, to_arg(to), amount)

    def only_owner(self) -> None:
        require(self.msg.sender == self.owner, "Not contract owner")

    def check_invariants(self) -> list[str]:
        """Contract-specific post-transaction checks; empty list when healthy."""
        return []

    # ── storage snapshots ───────────────────────────────────────

    def _export_state(self) -> dict:
        return copy.deepcopy({k: v for k, v in vars(self).items() if k not in _RUNTIME_ATTRS})

    def _import_state(self, state: dict) -> None:
        for key in [k for k in vars(self) if k not in _RUNTIME_ATTRS]:
            delattr(self, key)
        vars(self).update(copy.deepcopy(state))

    # ── ABI access ──────────────────────────────────────────────

    @classmethod
    def abi(cls) -> list[dict]:
        return [fn.to_dict() for fn in cls._abi.values()]

    @classmethod
    def abi_function(cls, name: str) -> AbiFunction | None:
        return cls._abi.get(name)

    def connect(self, account: Any) -> BoundContract:
        """Return a view of this contract whose calls are sent by *account*."""
        return BoundContract(self, to_arg(account))

    def __getattr__(self, name: str) -> ContractFunction:
        if name.startswith("_"):
            raise AttributeError(name)
        fn_abi = type(self)._abi.get(name)
        if fn_abi is None:
            raise AttributeError(f"{type(self).__name__} has no attribute or function '{name}'")
        return ContractFunction(self, fn_abi, sender=None)

    def __eq__(self, other: object) -> bool:
        other_addr = getattr(other, "address", other)
        if isinstance(other_addr, str) and hasattr(self, "address"):
            return other_addr.lower() == self.address.lower()
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.address.lower())

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {getattr(self, 'address', '(undeployed)')}>"


class ContractFunction:
    """A callable ABI entry point, optionally bound to a sender."""

    def __init__(self, contract: Contract, abi: AbiFunction, sender: str | None):
        self.contract = contract
        self.abi = abi
        self.sender = sender

    def __call__(self, *args: Any, value: int = 0) -> Any:
        """Views return their result; everything else mines a transaction."""
        chain = self.contract.chain
        call_args = tuple(to_arg(a) for a in args)
        if self.abi.view:
            return chain.static_call(self.sender, self.contract.address, self.abi.name, call_args, value)
        return chain.transact(self.sender, self.contract.address, self.abi.name, call_args, value)

    def call(self, *args: Any, value: int = 0) -> Any:
        """Run without committing (``eth_call``) and return the result."""
        return self.contract.chain.static_call(
            self.sender, self.contract.address, self.abi.name,
            tuple(to_arg(a) for a in args), value,
        )

    def __repr__(self) -> str:
        return f"<ContractFunction {type(self.contract).__name__}.{self.abi.name}>"


class BoundContract:
    """Proxy returned by :meth:`Contract.connect`."""

    def __init__(self, contract: Contract, sender: str):
        self._contract = contract
        self._sender = sender

    @property
    def address(self) -> str:
        return self._contract.address

    def __getattr__(self, name: str) -> ContractFunction:
        fn_abi = type(self._contract)._abi.get(name)
        if fn_abi is None:
            raise AttributeError(f"{type(self._contract).__name__} has no function '{name}'")
        return ContractFunction(self._contract, fn_abi, sender=self._sender)

    def __repr__(self) -> str:
        return f"<BoundContract {self._contract!r} from {self._sender}>"
