"""Tests for the post-transaction invariant checker."""

import pytest

from nftmarket_core.contract import Contract, external
from nftmarket_core.errors import InvariantViolation
from nftmarket_core.invariants import ChainSnapshot, InvariantChecker


class MockContract:
    """Minimal contract mock exposing check_invariants()."""
    def __init__(self, errors=None):
        self.errors = errors or []

    def check_invariants(self):
        return list(self.errors)


class MockChain:
    """Minimal chain mock for invariant testing."""
    def __init__(self, balances=None):
        self.balances = dict(balances or {})
        self.nonces = {addr: 0 for addr in self.balances}
        self.total_supply = sum(self.balances.values())
        self.contracts = {}


class Minter(Contract):
    """Creates ether out of thin air."""

    @external("print")
    def print_money(self) -> None:
        self.chain.balances[self.address] = self.chain.balances.get(self.address, 0) + 1


class Fragile(Contract):
    def __init__(self):
        super().__init__()
        self.broken = False

    @external("breakIt")
    def break_it(self) -> None:
        self.broken = True

    def check_invariants(self):
        return ["broken"] if self.broken else []


@pytest.fixture
def checker():
    return InvariantChecker()


class TestSnapshot:
    def test_capture(self, checker):
        chain = MockChain({"0xA": 500, "0xB": 100})
        chain.nonces["0xA"] = 3
        assert checker.capture(chain) is None  # capture stores internally
        assert checker._snapshot == ChainSnapshot(total_supply=600, nonces={"0xA": 3, "0xB": 0})

    def test_verify_without_capture_passes(self, checker):
        assert checker.verify(MockChain({"0xA": 1})) == (True, [])


class TestVerification:
    def test_no_changes_passes(self, checker):
        chain = MockChain({"0xA": 500})
        checker.capture(chain)
        assert checker.verify(chain) == (True, [])

    def test_transfer_passes(self, checker):
        chain = MockChain({"0xA": 500, "0xB": 100})
        checker.capture(chain)
        chain.balances["0xA"] -= 50
        chain.balances["0xB"] += 50
        chain.nonces["0xA"] += 1
        passed, errors = checker.verify(chain)
        assert passed, errors

    def test_ether_created(self, checker):
        chain = MockChain({"0xA": 500})
        checker.capture(chain)
        chain.balances["0xA"] += 1
        passed, errors = checker.verify(chain)
        assert not passed
        assert "not conserved" in errors[0]

    def test_supply_changed(self, checker):
        chain = MockChain({"0xA": 500})
        checker.capture(chain)
        chain.total_supply += 10
        chain.balances["0xA"] += 10
        passed, errors = checker.verify(chain)
        assert not passed
        assert "Supply changed" in errors[0]

    def test_negative_balance(self, checker):
        chain = MockChain({"0xA": 500, "0xB": 0})
        checker.capture(chain)
        chain.balances["0xA"] += 10
        chain.balances["0xB"] -= 10
        passed, errors = checker.verify(chain)
        assert not passed
        assert any("Negative balance" in e for e in errors)

    def test_nonce_decrease(self, checker):
        chain = MockChain({"0xA": 500})
        chain.nonces["0xA"] = 5
        checker.capture(chain)
        chain.nonces["0xA"] = 4
        passed, errors = checker.verify(chain)
        assert not passed
        assert "Nonce decreased" in errors[0]

    def test_contract_errors_are_prefixed(self, checker):
        chain = MockChain({"0xA": 500})
        chain.contracts["0x1234567890abcdef"] = MockContract(["Insolvent"])
        checker.capture(chain)
        passed, errors = checker.verify(chain)
        assert not passed
        assert errors == ["MockContract@0x12345678: Insolvent"]


class TestOnChain:
    def test_ether_creation_rolled_back(self, chain, deployer, alice):
        minter = deployer.deploy(Minter)
        supply = chain.total_supply
        with pytest.raises(InvariantViolation) as exc_info:
            minter.connect(alice).print()
        assert "not conserved" in str(exc_info.value)
        assert chain.get_balance(minter) == 0
        assert chain.total_supply == supply
        assert alice.nonce == 0

    def test_contract_invariant_rolled_back(self, chain, deployer, alice):
        fragile = deployer.deploy(Fragile)
        block = chain.block.number
        with pytest.raises(InvariantViolation) as exc_info:
            fragile.connect(alice).breakIt()
        assert exc_info.value.errors == [f"Fragile@{fragile.address[:10]}: broken"]
        assert fragile.broken is False
        assert chain.block.number == block

    def test_checks_can_be_disabled(self, deployer):
        chain = deployer.chain
        chain.invariants = None
        minter = deployer.deploy(Minter)
        minter.print()
        assert chain.get_balance(minter) == 1
