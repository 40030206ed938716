"""Pre-aggregated player stat store (read side)."""
