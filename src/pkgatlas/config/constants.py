"""Configuration constants.

This module contains truly constant values that should NOT be user-configurable.
These are API stability limits and wire-format details.

For configurable values, see models.py (SearchConfig, FullTextConfig, etc.).
"""

# =============================================================================
# Pagination Maximums
# =============================================================================

SEARCH_MAX_LIMIT = 100
"""Maximum results per page for every search route."""

# =============================================================================
# Hybrid Fusion
# =============================================================================

DEFAULT_KEYWORD_WEIGHT = 0.5
"""Relevance given to keyword-only hybrid hits when no config is supplied."""

# =============================================================================
# Full-Text Highlighting
# =============================================================================

HIGHLIGHT_PRE_TAG = "<mark>"
HIGHLIGHT_POST_TAG = "</mark>"
HIGHLIGHT_ATTRIBUTES = ("name", "description")

# =============================================================================
# Protocol/Validation Constants
# =============================================================================

LANGUAGE_ALL = "all"
"""Query-string value meaning "no language filter"."""

LICENSE_ALL = "all"
"""Query-string value meaning "no license filter"."""
