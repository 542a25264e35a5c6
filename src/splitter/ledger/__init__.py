from splitter.ledger.shares import ShareLedger, validate_shares

__all__ = ["ShareLedger", "validate_shares"]
