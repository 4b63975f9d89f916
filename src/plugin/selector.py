"""Exactly-one selection over the backend configuration slots."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from cache.errors import MultipleBackendsConfigured, NoBackendConfigured


@dataclass(frozen=True)
class BackendOption:
    name: str
    config: Optional[str]


@dataclass(frozen=True)
class SelectedBackend:
    index: int
    name: str
    config: str


def select_one(options: Sequence[BackendOption]) -> SelectedBackend:
    """
    Return the only option with a non-empty config.

    Raises NoBackendConfigured when every slot is empty and
    MultipleBackendsConfigured when more than one is filled.
    """
    filled = [(index, option) for index, option in enumerate(options) if option.config]

    if not filled:
        raise NoBackendConfigured()
    if len(filled) > 1:
        raise MultipleBackendsConfigured(option.name for _, option in filled)

    index, option = filled[0]
    return SelectedBackend(index=index, name=option.name, config=option.config)
