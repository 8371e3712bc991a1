"""Stake-backed fitness challenges: telemetry verification, progress and on-chain finalization."""

__version__ = "0.1.0"
