"""Saved-search criteria and matching."""

from .matcher import SavedSearchCriteria, matches_saved_search_criteria, parse_criteria

__all__ = [
    "SavedSearchCriteria",
    "matches_saved_search_criteria",
    "parse_criteria",
]
