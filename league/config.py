import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """League rating engine configuration settings"""

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///league.db')

    # Runtime settings
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')
    LOG_TO_FILE = os.getenv('LOG_TO_FILE', 'True').lower() == 'true'

    # Distributed run lock (optional)
    REDIS_URL = os.getenv('REDIS_URL')
    RUN_LOCK_TIMEOUT_SECONDS = int(os.getenv('RUN_LOCK_TIMEOUT_SECONDS', 1800))

    # Starting ratings (only used when a participant has no history)
    DEFAULT_RATING = 1500
    ADVANCED_STARTING_RATING = 1800
    BEGINNER_STARTING_RATING = 1200

    # Elo calculation settings
    K_FACTOR = int(os.getenv('K_FACTOR', 32))  # Same for every participant, regardless of games played
    PLAYER_MIN_RATING = 800
    PLAYER_MAX_RATING = 2800
    TEAM_MIN_RATING = 800
    TEAM_MAX_RATING = 2500

    # Reconciliation persistence
    PERSISTENCE_MAX_RETRIES = int(os.getenv('PERSISTENCE_MAX_RETRIES', 3))
    PERSISTENCE_RETRY_BASE_DELAY = float(os.getenv('PERSISTENCE_RETRY_BASE_DELAY', 0.1))

    # Brackets
    BYE_WIN_SCORE = 21  # Nominal score recorded when a bye is auto-won

    @classmethod
    def starting_rating_for_tier(cls, skill_tier) -> int:
        """Get the first rating for a participant with no history"""
        if not skill_tier:
            return cls.DEFAULT_RATING
        tier = str(getattr(skill_tier, 'value', skill_tier)).lower()
        if tier == 'advanced':
            return cls.ADVANCED_STARTING_RATING
        elif tier == 'beginner':
            return cls.BEGINNER_STARTING_RATING
        return cls.DEFAULT_RATING

    @classmethod
    def validate(cls):
        """Validate that the configuration is usable"""
        if cls.K_FACTOR <= 0:
            raise ValueError("K_FACTOR must be positive")
        if cls.PLAYER_MIN_RATING >= cls.PLAYER_MAX_RATING:
            raise ValueError("PLAYER_MIN_RATING must be below PLAYER_MAX_RATING")
        if cls.TEAM_MIN_RATING >= cls.TEAM_MAX_RATING:
            raise ValueError("TEAM_MIN_RATING must be below TEAM_MAX_RATING")
        if cls.PERSISTENCE_MAX_RETRIES < 1:
            raise ValueError("PERSISTENCE_MAX_RETRIES must be at least 1")
        if not cls.DATABASE_URL:
            raise ValueError("DATABASE_URL is required")
