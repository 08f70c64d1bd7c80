"""
Taste vectors for ranking and search.

Responsibilities:
- Encode users and places into one 32-dimension space (6 domains + 26 hashed tag buckets).
- Backfill user taste graphs and vectors (Phase 1) and place vectors (Phase 2).
- Persist place vectors as a ``.npy`` snapshot.
- Cosine-similarity search over the place vectors.
"""
