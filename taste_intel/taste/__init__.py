"""
Taste matching and decay engine.

Responsibilities:
- Decay stored confidences at read time (180-day half-life by default).
- Decide when a user's taste profile is stale enough to re-synthesize.
- Score how well a place's signals match a user's six-domain taste profile.
- Hold the per-user taste graph (TasteNode / ContradictionNode).
"""
