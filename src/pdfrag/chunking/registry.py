"""Name to chunking-strategy lookup."""

from __future__ import annotations

from typing import Callable, Dict, List

from pdfrag.chunking.base import ChunkingStrategy
from pdfrag.chunking.page_chunker import PageChunker

# Factories take the configured maximum chunk length.
StrategyFactory = Callable[[int], ChunkingStrategy]

_REGISTRY: Dict[str, StrategyFactory] = {}


class UnknownStrategyError(KeyError):
    def __str__(self) -> str:
        return f"Unknown chunking strategy {self.args[0]!r}; known: {', '.join(available_strategies())}"


def register_strategy(name: str, factory: StrategyFactory) -> None:
    _REGISTRY[name] = factory


def available_strategies() -> List[str]:
    return sorted(_REGISTRY)


def get_strategy(name: str, *, max_length: int = 2000) -> ChunkingStrategy:
    try:
        factory = _REGISTRY[name]
    except KeyError:
        raise UnknownStrategyError(name) from None
    return factory(max_length)


register_strategy(PageChunker.name, PageChunker)
