"""Domain layer: entities, errors, store port and the reconciliation core."""
