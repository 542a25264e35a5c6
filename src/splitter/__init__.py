"""Reward splitter — share ledger, module registry and settlement engine."""

from splitter.distributor import Distributor
from splitter.ledger.shares import ShareLedger
from splitter.modules.registry import ModuleRegistry
from splitter.rewards.accumulator import RewardAccumulator
from splitter.settlement.engine import DistributionEngine, compute_payouts

__version__ = "0.1.0"

__all__ = [
    "DistributionEngine",
    "Distributor",
    "ModuleRegistry",
    "RewardAccumulator",
    "ShareLedger",
    "compute_payouts",
]
