"""Anti-gaming reward accrual and payout."""

from tracechain.rewards.distributor import RewardsDistributor
from tracechain.rewards.metadata import RewardMetadata
from tracechain.rewards.price_feed import PriceFeed, StaticPriceFeed

__all__ = ["PriceFeed", "RewardMetadata", "RewardsDistributor", "StaticPriceFeed"]
