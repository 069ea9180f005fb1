from __future__ import annotations

"""
Plain-language rationale for a match.

Purely lexical and independent of the embeddings: it reports which
query words appear inside the recipe's ingredient strings, falling back
to a generic "semantically close" line when none do.
"""

from typing import List

from .corpus_store import CorpusEntry
from .normalize import lexical_tokens, normalize_unicode, unique_in_order


def shared_ingredients(query: str, ingredients) -> List[str]:
    """Query tokens found as substrings of any ingredient, in query order."""
    lowered = [normalize_unicode(str(ing)).lower() for ing in ingredients]
    return [
        tok
        for tok in unique_in_order(lexical_tokens(query))
        if any(tok in ing for ing in lowered)
    ]


def explain(query: str, entry: CorpusEntry, score: float) -> str:
    reason = f"This is a {entry.cuisine.upper()} recipe. "
    shared = shared_ingredients(query, entry.ingredients)
    if shared:
        reason += f"It uses your ingredients: {', '.join(shared)}."
    else:
        reason += "It is semantically close to your ingredient combination."
    return reason
