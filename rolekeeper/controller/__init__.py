"""Controllers — the per-role reconciliation engine and the registry that holds them."""
