import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """League configuration settings"""
    
    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///league.db')
    
    # Runtime settings
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')
    LOG_TO_FILE = os.getenv('LOG_TO_FILE', 'True').lower() == 'true'
    
    # Match settings
    MIN_MATCH_PLAYERS = 2
    MAX_MATCH_DURATION_MINUTES = 1440  # 24 hours
    
    # Group settings
    INVITE_CODE_LENGTH = 8
    INVITE_CODE_MAX_ATTEMPTS = 10
    
    # Listing settings
    DEFAULT_PAGE_SIZE = 20
    
    @classmethod
    def get_async_database_url(cls, database_url: str = None) -> str:
        """Convert a sync sqlite URL to its aiosqlite form if needed"""
        url = database_url or cls.DATABASE_URL
        if url.startswith('sqlite:///'):
            url = url.replace('sqlite:///', 'sqlite+aiosqlite:///')
        return url
    
    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        if not cls.DATABASE_URL:
            raise ValueError("DATABASE_URL is required")
