"""
Place intelligence enrichment pipeline.

Responsibilities:
- Fan a place reference out to the source adapters (reviews, editorial, menu, awards, social).
- Record every adapter attempt as a diagnostic instead of raising.
- Merge adapter output into one ordered, de-duplicated signal set.
- Score the reliability of that signal set and persist the result per place.
"""
