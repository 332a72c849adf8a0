"""
Matching Rules Module
"""

from .case_rules import CaseMatchScorer, case_match_scorer, reference_similarity, round_half_up

__all__ = ["CaseMatchScorer", "case_match_scorer", "reference_similarity", "round_half_up"]
