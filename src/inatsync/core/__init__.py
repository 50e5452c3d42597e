"""Core sync engine: transport, cache, pagination, orchestration and normalization."""
