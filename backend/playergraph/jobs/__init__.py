"""Scheduled background jobs: relationship sync and graph integrity checks."""
