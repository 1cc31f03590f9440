# doorman/services/captcha/challenges.py
"""
Каталог вариантов капчи: эмодзи на кнопке + описание для вопроса
"на какой кнопке <описание>?".
"""

import random
from dataclasses import dataclass
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class ChallengeOption:
    emoji: str
    description: str


CATALOGUE: Tuple[ChallengeOption, ...] = (
    ChallengeOption("🐶", "собака"),
    ChallengeOption("🐱", "кошка"),
    ChallengeOption("🐭", "мышь"),
    ChallengeOption("🐰", "кролик"),
    ChallengeOption("🦊", "лиса"),
    ChallengeOption("🐻", "медведь"),
    ChallengeOption("🐼", "панда"),
    ChallengeOption("🐸", "лягушка"),
    ChallengeOption("🐵", "обезьяна"),
    ChallengeOption("🐔", "курица"),
    ChallengeOption("🐧", "пингвин"),
    ChallengeOption("🐢", "черепаха"),
    ChallengeOption("🐙", "осьминог"),
    ChallengeOption("🐟", "рыба"),
    ChallengeOption("🍎", "яблоко"),
    ChallengeOption("🍌", "банан"),
    ChallengeOption("🍓", "клубника"),
    ChallengeOption("🍉", "арбуз"),
    ChallengeOption("🚗", "машина"),
    ChallengeOption("✈️", "самолёт"),
    ChallengeOption("🚲", "велосипед"),
    ChallengeOption("⚽", "мяч"),
    ChallengeOption("🎸", "гитара"),
    ChallengeOption("🌵", "кактус"),
)


def pick_options(count: int = 8, rng: Optional[random.Random] = None) -> Tuple[List[int], int]:
    """
    Выбирает count различных вариантов и правильный ответ среди них.

    Returns:
        (индексы вариантов в каталоге в порядке кнопок, индекс правильного в каталоге)
    """
    rng = rng or random
    options = rng.sample(range(len(CATALOGUE)), count)
    return options, rng.choice(options)
