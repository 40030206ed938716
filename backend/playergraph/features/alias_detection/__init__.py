"""Alias (multi-account) detection: signal analyzers, flag rules and orchestration."""
