"""Episode storage."""

from .episodic import Episode, EpisodeRecord, EpisodicMemory, Memory

__all__ = ["Episode", "EpisodeRecord", "EpisodicMemory", "Memory"]
