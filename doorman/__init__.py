"""Club Doorman - антиспам-бот для групповых чатов Telegram."""

__version__ = "1.0.0"
