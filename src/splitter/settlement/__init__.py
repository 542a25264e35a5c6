from splitter.settlement.engine import DistributionEngine, compute_payouts

__all__ = ["DistributionEngine", "compute_payouts"]
