"""Persistence for memory tiers owned by the engine's adapters."""

from context_engine.db.episode_store import EpisodeStore

__all__ = ["EpisodeStore"]
