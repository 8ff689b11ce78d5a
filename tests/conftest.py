"""
Shared pytest fixtures for the NFTMarket test suite.

The ``marketplace`` / ``nft`` pair reproduces the standard auction
fixture: deployer deploys both contracts, creator mints token 1 for
0.5 ether and approves the marketplace for it.
"""

import pytest

from nftmarket_core.chain import Chain
from nftmarket_core.marketplace import NftMarketPlaceAuction
from nftmarket_core.nft import GHLocaleNFT
from nftmarket_core.units import parse_ether

GENESIS_TS = 1_700_000_000

ETHER_AMOUNT = parse_ether("0.5")
INITIAL_BID = parse_ether("1")
NEXT_BID = parse_ether("2")


@pytest.fixture
def chain():
    """Fresh chain with 10 funded accounts and a fixed genesis time."""
    return Chain(genesis_timestamp=GENESIS_TS)


@pytest.fixture
def deployer(chain):
    return chain.accounts[0]


@pytest.fixture
def creator(chain):
    return chain.accounts[1]


@pytest.fixture
def alice(chain):
    return chain.accounts[2]


@pytest.fixture
def bob(chain):
    return chain.accounts[3]


@pytest.fixture
def marketplace(deployer):
    """Marketplace with default settings (2.5 % fee, no extension)."""
    return deployer.deploy(NftMarketPlaceAuction)


@pytest.fixture
def nft(deployer, creator, marketplace):
    """Collection where creator owns token 1 and the marketplace is approved for it."""
    collection = deployer.deploy(GHLocaleNFT)
    collection.connect(creator).mint(value=ETHER_AMOUNT)
    collection.connect(creator).approve(marketplace, 1)
    return collection


@pytest.fixture
def auction(marketplace, nft, creator):
    """Auction 0 on token 1: starting price 1 ether, ending 6000 s from now."""
    end = marketplace.getTimestamp() + 6000
    marketplace.connect(creator).createAuction(nft, 1, INITIAL_BID, end)
    return 0
