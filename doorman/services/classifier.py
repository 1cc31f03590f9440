# ============================================================
# ML КЛАССИФИКАТОР СПАМА
# ============================================================
# TF-IDF по символьным n-граммам + логистическая регрессия.
# Символьные n-граммы устойчивы к опечаткам и склейке слов.
#
# Датасет - файл spam-ham.txt, строка "spam<TAB>текст" или
# "ham<TAB>текст". Обучение синхронное и тяжёлое, поэтому
# выполняется в отдельном потоке (asyncio.to_thread) и не
# блокирует обработку апдейтов.
#
# Скор - значение decision_function: > 0 спам, < 0 не спам,
# чем ближе к нулю, тем ниже уверенность.
# ============================================================

import asyncio
import logging
from typing import List, Optional, Tuple

from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.linear_model import LogisticRegression
from sklearn.pipeline import Pipeline, make_pipeline

from doorman.services.persistence import append_line, read_lines
from doorman.services.text_normalizer import normalize

logger = logging.getLogger(__name__)

DATASET_FILE = "spam-ham.txt"
SPAM_LABEL = "spam"
HAM_LABEL = "ham"


def parse_dataset(lines: List[str]) -> Tuple[List[str], List[int]]:
    """Разбирает строки датасета в (нормализованные тексты, метки 1=спам)."""
    texts: List[str] = []
    labels: List[int] = []
    for line in lines:
        label, sep, text = line.partition("\t")
        if not sep:
            continue
        label = label.strip().lower()
        if label not in (SPAM_LABEL, HAM_LABEL):
            continue
        normalized = normalize(text)
        if not normalized:
            continue
        texts.append(normalized)
        labels.append(1 if label == SPAM_LABEL else 0)
    return texts, labels


def _fit(texts: List[str], labels: List[int]) -> Optional[Pipeline]:
    # Для обучения нужны примеры обоих классов
    if len(set(labels)) < 2:
        return None
    model = make_pipeline(
        TfidfVectorizer(analyzer="char_wb", ngram_range=(2, 5), sublinear_tf=True, min_df=1),
        LogisticRegression(class_weight="balanced", max_iter=1000),
    )
    model.fit(texts, labels)
    return model


class SpamHamClassifier:
    """
    Классификатор спам/не спам с дообучением по командам админов.

    Пока модель не обучена (нет датасета или в нём один класс),
    classify возвращает (False, 0.0): решение остаётся за фильтрами
    и людьми.
    """

    def __init__(self, dataset_path: str):
        self.dataset_path = dataset_path
        self._model: Optional[Pipeline] = None
        self._lock = asyncio.Lock()

    @property
    def trained(self) -> bool:
        return self._model is not None

    async def train(self) -> bool:
        """(Пере)обучает модель на текущем датасете в рабочем потоке."""
        async with self._lock:
            lines = read_lines(self.dataset_path)
            texts, labels = parse_dataset(lines)
            try:
                model = await asyncio.to_thread(_fit, texts, labels)
            except ValueError as e:
                # Например, словарь пуст после фильтрации
                logger.error(f"[CLASSIFIER] Ошибка обучения: {e}")
                return False
            if model is None:
                logger.warning(
                    f"[CLASSIFIER] ⚠️ В датасете {self.dataset_path} нет примеров обоих классов "
                    f"({len(texts)} строк), классификатор отключён"
                )
                return False
            self._model = model
            logger.info(
                f"[CLASSIFIER] ✅ Модель обучена: {sum(labels)} спам, {len(labels) - sum(labels)} не спам"
            )
            return True

    async def classify(self, normalized_text: str) -> Tuple[bool, float]:
        """
        Args:
            normalized_text: Нормализованный текст сообщения

        Returns:
            (спам ли это, скор)
        """
        model = self._model
        if model is None or not normalized_text:
            return False, 0.0
        score = round(float(model.decision_function([normalized_text])[0]), 3)
        return score > 0, score

    async def add_spam(self, text: str) -> None:
        await self._add_example(SPAM_LABEL, text)

    async def add_ham(self, text: str) -> None:
        await self._add_example(HAM_LABEL, text)

    async def _add_example(self, label: str, text: str) -> None:
        if not text or not text.strip():
            return
        async with self._lock:
            append_line(self.dataset_path, f"{label}\t{text}")
        logger.info(f"[CLASSIFIER] Добавлен пример '{label}' в датасет, переобучение...")
        await self.train()
