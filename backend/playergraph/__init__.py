"""Player relationship graph ETL and alias detection service."""
