import logging
import sys
from datetime import datetime
from pathlib import Path

from arena_bot.config import Config

ROOT_LOGGER_NAME = 'arena_bot'

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def _configure_root() -> logging.Logger:
    """Attach the console and daily file handlers to the bot's namespace logger once"""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if root.handlers:
        return root

    log_level = logging.DEBUG if Config.DEBUG else logging.INFO
    root.setLevel(log_level)
    # Handled here; don't repeat lines through the stdlib root logger
    root.propagate = False

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    log_dir = Path(Config.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(
        log_dir / f'arena_bot_{datetime.now().strftime("%Y%m%d")}.log',
        encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    return root


def setup_logger(name: str) -> logging.Logger:
    """
    Get a logger inside the bot's namespace.

    Names outside it (e.g. '__main__') are nested under 'arena_bot' so every
    module shares the same two handlers instead of opening its own.
    """
    _configure_root()
    if name != ROOT_LOGGER_NAME and not name.startswith(f'{ROOT_LOGGER_NAME}.'):
        name = f'{ROOT_LOGGER_NAME}.{name}'
    return logging.getLogger(name)
