from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from decktutor.search import SemanticSearch


@dataclass
class ToolContext:
    """Runtime context injected into tools that declare a ``context`` parameter.

    The dispatcher builds one per call from the *caller's* identity, so a
    tool can never be pointed at another user's data through its
    arguments.

    Args:
        user_id: Identity of the user the turn belongs to.
        search: Semantic search collaborator over the user's decks and cards.
    """

    user_id: str
    search: SemanticSearch
