"""
Unit тесты ML классификатора на маленьком датасете.
"""
import pytest

from doorman.services.classifier import SpamHamClassifier, parse_dataset
from doorman.services.text_normalizer import normalize

SPAM = [
    "Заработок от 500$ в день, пишите в личку",
    "Набираю людей в команду, доход от 1000$ без вложений",
    "Пассивный доход на криптовалюте, подробности в лс",
    "Удаленная работа, заработок каждый день, пиши в личные",
    "Ищу партнеров, доход от 300$ в неделю, пишите",
    "Легкий заработок на ставках, пиши в лс",
]
HAM = [
    "Кто идёт сегодня на митап по питону?",
    "Спасибо за доклад, было очень интересно",
    "Подскажите, как настроить линтер в проекте",
    "Завтра встречаемся в кафе у метро в семь",
    "Отличная статья про асинхронность, рекомендую",
    "Кто-нибудь пробовал новый релиз библиотеки?",
]


@pytest.fixture
def dataset(tmp_path):
    path = tmp_path / "spam-ham.txt"
    lines = [f"spam\t{t}" for t in SPAM] + [f"ham\t{t}" for t in HAM]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def test_parse_dataset_skips_garbage():
    texts, labels = parse_dataset([
        "spam\tКупи СЛОНА",
        "ham\tпривет",
        "без табуляции",
        "unknown\tчто-то",
        "ham\t   ",
    ])
    assert texts == ["купи слона", "привет"]
    assert labels == [1, 0]


@pytest.mark.asyncio
async def test_untrained_classifier_is_neutral(tmp_path):
    classifier = SpamHamClassifier(str(tmp_path / "missing.txt"))

    assert await classifier.train() is False
    assert classifier.trained is False
    assert await classifier.classify("заработок без вложений") == (False, 0.0)


@pytest.mark.asyncio
async def test_single_class_dataset_is_not_trained(tmp_path):
    path = tmp_path / "spam-ham.txt"
    path.write_text("spam\tзаработок\nspam\tдоход\n", encoding="utf-8")
    classifier = SpamHamClassifier(str(path))

    assert await classifier.train() is False
    assert classifier.trained is False


@pytest.mark.asyncio
async def test_spam_scores_higher_than_ham(dataset):
    classifier = SpamHamClassifier(str(dataset))
    assert await classifier.train() is True

    _, spam_score = await classifier.classify(normalize("Заработок без вложений, пишите в личку"))
    _, ham_score = await classifier.classify(normalize("Подскажите доклад про питон на митапе"))

    assert spam_score > ham_score
    assert round(spam_score, 3) == spam_score


@pytest.mark.asyncio
async def test_add_example_appends_and_retrains(dataset):
    classifier = SpamHamClassifier(str(dataset))
    await classifier.train()

    await classifier.add_spam("Казино онлайн, бонус новичкам")
    await classifier.add_ham("   ")

    content = dataset.read_text(encoding="utf-8")
    assert content.rstrip("\n").endswith("spam\tКазино онлайн, бонус новичкам")
    assert content.count("\n") == len(SPAM) + len(HAM) + 1
    assert classifier.trained
