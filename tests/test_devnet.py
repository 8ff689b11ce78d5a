"""
Tests for nftmarket_core.devnet — the deployed marketplace convenience layer.
"""

import pytest

from nftmarket_core.config import NFTMarketConfig
from nftmarket_core.devnet import Devnet
from nftmarket_core.errors import UnknownAccount
from nftmarket_core.testing import reverts
from nftmarket_core.units import parse_ether


@pytest.fixture
def devnet():
    cfg = NFTMarketConfig()
    cfg.chain.genesis_timestamp = 1_700_000_000
    cfg.chain.accounts = 4
    return Devnet(cfg)


class TestDevnet:
    def test_contracts_deployed_by_account_zero(self, devnet):
        deployer = devnet.chain.accounts[0]
        assert devnet.nft.owner == deployer
        assert devnet.marketplace.owner == deployer
        assert devnet.marketplace.feeBps() == 250
        assert devnet.nft.mintPrice() == parse_ether("0.5")

    def test_config_is_applied(self):
        cfg = NFTMarketConfig()
        cfg.nft.mint_price = "0.1"
        cfg.marketplace.fee_bps = 100
        net = Devnet(cfg)
        assert net.nft.mintPrice() == parse_ether("0.1")
        assert net.marketplace.feeBps() == 100

    def test_no_accounts(self):
        cfg = NFTMarketConfig()
        cfg.chain.accounts = 0
        with pytest.raises(ValueError):
            Devnet(cfg)

    def test_account_resolution(self, devnet):
        acc = devnet.chain.accounts[1]
        assert devnet.account(1) is acc
        assert devnet.account("1") is acc
        assert devnet.account(acc.address) is acc
        with pytest.raises(UnknownAccount):
            devnet.account("9")

    def test_full_auction_flow(self, devnet):
        assert devnet.mint(1).return_value == 1
        devnet.approve(1, 1)
        end = devnet.chain.time() + 3600
        created = devnet.create_auction(1, 1, parse_ether("1"), end)
        auction_id = created.return_value

        devnet.bid(2, auction_id, parse_ether("1"))
        devnet.bid(3, auction_id, parse_ether("2"))
        devnet.chain.increase_time(3600)
        ended = devnet.end_auction(2, auction_id)
        assert ended.return_value == devnet.chain.accounts[3]

        refund = devnet.withdraw(2)
        assert refund.return_value == parse_ether("1")
        assert devnet.token_info(1)["owner"] == devnet.chain.accounts[3].address

        auctions = devnet.auctions()
        assert len(auctions) == 1
        assert auctions[0]["status"] == "ENDED"
        assert auctions[0]["highestBid"] == str(parse_ether("2"))

    def test_cancel(self, devnet):
        devnet.mint(1)
        devnet.approve(1, 1)
        devnet.create_auction(1, 1, parse_ether("1"), devnet.chain.time() + 3600)
        with reverts("Not seller"):
            devnet.cancel_auction(2, 0)
        devnet.cancel_auction(1, 0)
        assert devnet.token_info(1)["owner"] == devnet.chain.accounts[1].address

    def test_status(self, devnet):
        devnet.mint(1)
        status = devnet.status()
        assert status["nft"] == devnet.nft.address
        assert status["marketplace"] == devnet.marketplace.address
        assert status["minted"] == 1
        assert status["auctions"] == 0
        assert status["active_auctions"] == 0
        assert status["chain_id"] == 31337
