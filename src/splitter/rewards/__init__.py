from splitter.rewards.accumulator import RewardAccumulator

__all__ = ["RewardAccumulator"]
