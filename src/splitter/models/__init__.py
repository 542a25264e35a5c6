"""Core data models for the reward splitter."""

from splitter.models.distribution import (
    Confirmation,
    InvocationResult,
    Module,
    PayoutInstruction,
    SettlementRecord,
    SettlementState,
    Share,
)

__all__ = [
    "Confirmation",
    "InvocationResult",
    "Module",
    "PayoutInstruction",
    "SettlementRecord",
    "SettlementState",
    "Share",
]
