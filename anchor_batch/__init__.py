"""Batch netting and Merkle commitment engine for cross-chain swap intents."""

__version__ = "0.1.0"
