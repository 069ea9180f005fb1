from __future__ import annotations

"""
Exception taxonomy for the recipe search pipeline.

Loading errors (``AcquisitionError`` and its ``ParseError`` subclass) are
recovered inside the corpus loading ladder.  ``NoDataError`` means the
ladder is exhausted.  The remaining errors are fatal to a single query
only and leave the orchestrator usable.
"""


class RecipeSearchError(Exception):
    """Base class for every error raised by this package."""


class AcquisitionError(RecipeSearchError):
    """A corpus resource (cache, consolidated file or shard) could not be fetched."""


class ParseError(AcquisitionError):
    """A corpus resource was fetched but its contents are malformed."""


class NoDataError(RecipeSearchError):
    """Every loading strategy failed or the corpus came back empty."""


class CorpusNotLoadedError(RecipeSearchError):
    """A query arrived before the corpus finished loading."""


class EncoderNotReadyError(RecipeSearchError):
    """The embedding model is not loaded."""


class EmptyQueryError(RecipeSearchError, ValueError):
    """The query is empty after normalization."""


class DimensionMismatchError(RecipeSearchError, ValueError):
    """Two vectors that must share a dimension do not."""

    def __init__(self, expected: int, actual: int, what: str = "vector") -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"{what} has dimension {actual}, expected {expected}")
