import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Bot configuration settings"""

    # Discord settings
    DISCORD_TOKEN = os.getenv('DISCORD_TOKEN')
    DISCORD_GUILD_ID = int(os.getenv('DISCORD_GUILD_ID', 0))
    DISCORD_GUILD_IDS = os.getenv('DISCORD_GUILD_IDS', '')  # Comma-separated for multi-guild support
    OWNER_DISCORD_ID = int(os.getenv('OWNER_DISCORD_ID', 0))

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///arena.db')
    DATABASE_BUSY_TIMEOUT = float(os.getenv('DATABASE_BUSY_TIMEOUT', 15))  # seconds, SQLite only

    # Bot settings
    COMMAND_PREFIX = os.getenv('COMMAND_PREFIX', '!')
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')

    # Rating settings
    STARTING_RATING = 1000
    DEFAULT_DIFFICULTY = 5
    RATING_CACHE_TTL = int(os.getenv('RATING_CACHE_TTL', 60))

    # Arena pairing settings
    PAIRING_INTERVAL_SECONDS = float(os.getenv('PAIRING_INTERVAL_SECONDS', 3))
    PAIRING_TIMEOUT_SECONDS = float(os.getenv('PAIRING_TIMEOUT_SECONDS', 10))
    DEFAULT_TOURNAMENT_MINUTES = 60
    DEFAULT_SWISS_ROUNDS = 5

    @classmethod
    def get_guild_ids(cls):
        """Get list of guild IDs for command syncing"""
        if cls.DISCORD_GUILD_IDS:
            try:
                return [int(guild_id.strip()) for guild_id in cls.DISCORD_GUILD_IDS.split(',') if guild_id.strip()]
            except ValueError:
                raise ValueError("DISCORD_GUILD_IDS must be comma-separated integers")
        elif cls.DISCORD_GUILD_ID:
            return [cls.DISCORD_GUILD_ID]
        else:
            # Global sync
            return []

    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        if not cls.DISCORD_TOKEN:
            raise ValueError("DISCORD_TOKEN is required")
        if not cls.OWNER_DISCORD_ID:
            raise ValueError("OWNER_DISCORD_ID is required")
        if cls.PAIRING_TIMEOUT_SECONDS <= 0:
            raise ValueError("PAIRING_TIMEOUT_SECONDS must be positive")
