"""
League-wide constants for the rating and bracket engines.

This module contains the magic numbers used throughout the codebase that are
not meant to be tuned per deployment (those live in ``league.config``).
"""

class StatsConstants:
    """Constants related to league standings and derived statistics."""

    # League points awarded per completed match
    WIN_POINTS = 3
    PARTICIPATION_POINTS = 1  # Awarded to the losing side

    # Rolling window of outcomes kept per participant
    RECENT_RESULTS_WINDOW = 10

    # Number of most recent outcomes summarized in the form string
    RECENT_FORM_DISPLAY = 5
    RECENT_FORM_EMPTY = "N/A"

class SkillTierConstants:
    """Rating thresholds used to recommend a skill tier."""

    INTERMEDIATE_MIN_RATING = 1400
    ADVANCED_MIN_RATING = 1800

class BracketConstants:
    """Constants for single-elimination brackets."""

    MIN_PARTICIPANTS = 2
    BYE_NAME = "BYE"

    FINAL_TITLE = "Final"
    SEMIFINAL_TITLE = "Semifinals"
    QUARTERFINAL_TITLE = "Quarterfinals"
    ROUND_OF_TITLE = "Round of {size}"
