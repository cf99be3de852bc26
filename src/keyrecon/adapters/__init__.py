"""Store client adapters."""
