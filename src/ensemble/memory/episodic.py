"""In-process episodic memory written by agent runs."""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol


class Memory(Protocol):
    def append_episode(self, episode_id: str, record: "EpisodeRecord") -> None:  # pragma: no cover - interface
        ...

    def close_episode(self, episode_id: str) -> None:  # pragma: no cover - interface
        ...


@dataclass
class EpisodeRecord:
    kind: str
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


@dataclass
class Episode:
    id: str
    records: List[EpisodeRecord] = field(default_factory=list)
    closed: bool = False

    def kinds(self) -> List[str]:
        return [record.kind for record in self.records]


class EpisodicMemory:
    """Keeps the most recent ``max_episodes`` episodes in insertion order."""

    def __init__(self, max_episodes: int = 100) -> None:
        self.max_episodes = max_episodes
        self._episodes: "OrderedDict[str, Episode]" = OrderedDict()

    def append_episode(self, episode_id: str, record: EpisodeRecord) -> None:
        episode = self._episodes.get(episode_id)
        if episode is None:
            episode = self._episodes[episode_id] = Episode(id=episode_id)
            while len(self._episodes) > self.max_episodes:
                self._episodes.popitem(last=False)
        if episode.closed:
            raise ValueError(f"Episode {episode_id} is closed")
        episode.records.append(record)

    def close_episode(self, episode_id: str) -> None:
        episode = self._episodes.get(episode_id)
        if episode is not None:
            episode.closed = True

    def episode(self, episode_id: str) -> Optional[Episode]:
        return self._episodes.get(episode_id)

    def episodes(self) -> List[Episode]:
        return list(self._episodes.values())
