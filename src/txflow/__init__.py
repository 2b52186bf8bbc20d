"""Transaction lifecycle orchestration for the XRP Ledger."""
