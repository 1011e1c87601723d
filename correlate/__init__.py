"""
Correlate package: infer unlogged work from issue activity.
"""

from .suggestions import SuggestionQuery, generate_suggestions

__all__ = ["SuggestionQuery", "generate_suggestions"]
