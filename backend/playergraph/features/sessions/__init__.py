"""Session and observation store (read side)."""
