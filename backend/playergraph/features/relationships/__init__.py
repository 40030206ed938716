"""Player relationship graph: co-play extraction, graph writes and incremental sync."""
