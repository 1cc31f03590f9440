# doorman/services/captcha/__init__.py
"""
Модуль капчи для новичков.

Структура модуля:
- challenges.py - каталог вариантов (эмодзи + описание)
- flow_service.py - выдача капчи, обработка ответа, таймауты
"""

from doorman.services.captcha.challenges import CATALOGUE, ChallengeOption, pick_options
from doorman.services.captcha.flow_service import (
    CaptchaService,
    PendingChallenge,
    build_callback_data,
    parse_callback_data,
)

__all__ = [
    "CATALOGUE",
    "ChallengeOption",
    "pick_options",
    "CaptchaService",
    "PendingChallenge",
    "build_callback_data",
    "parse_callback_data",
]
