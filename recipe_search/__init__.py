"""
Top-level package for semantic recipe search.

Given a free-text list of ingredients the package returns the most
similar recipes from a static corpus whose embeddings were computed
offline.  It covers corpus loading and caching, query encoding that
matches the offline vectors, cosine ranking and a short lexical
explanation per match, plus a FastAPI app and a CLI on top.  Importing
the package has no side effects; models and data load on demand.
"""
