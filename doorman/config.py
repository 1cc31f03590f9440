import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Всегда ищем .env относительно корня проекта
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# Определяем окружение
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

if ENVIRONMENT == "production":
    env_file = ".env.prod"
elif ENVIRONMENT == "testing":
    env_file = ".env.test"
else:
    env_file = ".env.dev"

# ENV_PATH переопределяет путь (для Docker)
env_path = os.getenv("ENV_PATH") or os.path.join(BASE_DIR, env_file)

# Загружаем .env файл (переменные окружения процесса имеют приоритет)
load_dotenv(dotenv_path=env_path)


def _env_bool(name: str, default: bool) -> bool:
    """Читает булев флаг из окружения: true/1/yes/on считаются включёнными."""
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} должен быть целым числом, получено: {raw!r}")


# ============================================================
# ОСНОВНЫЕ НАСТРОЙКИ БОТА
# ============================================================
BOT_TOKEN = os.getenv("BOT_TOKEN")
# Админский чат: сюда пересылаются подозрительные сообщения и дайджест
ADMIN_CHAT_ID = _env_int("ADMIN_CHAT_ID")
# Канал для ERROR логов (необязательный)
LOG_CHANNEL_ID = os.getenv("LOG_CHANNEL_ID")

# Каталог с файлами состояния (offset, approved users, датасет и т.д.)
DATA_DIR = os.getenv("DATA_DIR", os.path.join(BASE_DIR, "data"))

# Redis настройки
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# ============================================================
# НАСТРОЙКИ МОДЕРАЦИИ
# ============================================================
# Банить пользователей из блеклиста автоматически (иначе - удалить и переслать админам)
BLACKLIST_AUTO_BAN = _env_bool("BLACKLIST_AUTO_BAN", True)
# Банить каналы, пишущие в чат от своего имени
CHANNEL_AUTO_BAN = _env_bool("CHANNEL_AUTO_BAN", True)
# Пересылать ham с низкой уверенностью классификатора
LOW_CONFIDENCE_HAM_FORWARD = _env_bool("LOW_CONFIDENCE_HAM_FORWARD", True)
LOW_CONFIDENCE_THRESHOLD = float(os.getenv("LOW_CONFIDENCE_THRESHOLD", "-0.7"))
# Час (UTC), в который отправляется суточный дайджест
DIGEST_HOUR = _env_int("DIGEST_HOUR", 12)

# ============================================================
# ВНЕШНИЕ СЕРВИСЫ
# ============================================================
# API клуба: проверка, является ли пользователь участником клуба
CLUB_URL = os.getenv("CLUB_URL", "")
CLUB_SERVICE_TOKEN = os.getenv("CLUB_SERVICE_TOKEN", "")
# Публичная база спамеров (пустое значение отключает удалённую проверку)
LOLS_API_URL = os.getenv("LOLS_API_URL", "https://api.lols.bot/account")

# Настройки логирования
DEBUG = _env_bool("DEBUG", False)
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO")

# Валидация обязательных параметров
if not BOT_TOKEN:
    raise ValueError("BOT_TOKEN не установлен!")
if ADMIN_CHAT_ID is None:
    raise ValueError("ADMIN_CHAT_ID не установлен!")


@dataclass(frozen=True)
class ModerationSettings:
    """
    Настройки модерации, которые передаются в сервисы.

    Собраны в один объект, чтобы тесты могли подменять отдельные
    значения через dataclasses.replace, не трогая окружение.
    """
    admin_chat_id: int
    data_dir: str = DATA_DIR
    blacklist_auto_ban: bool = True
    channel_auto_ban: bool = True
    low_confidence_forward: bool = True
    low_confidence_threshold: float = -0.7
    digest_hour: int = 12
    # Капча
    captcha_options: int = 8
    captcha_timeout_seconds: float = 60.0
    captcha_sweep_interval: float = 15.0
    captcha_cleanup_delay: float = 72.0
    intro_delay_seconds: float = 2.0
    restriction_minutes: int = 20
    # Доверие
    trust_threshold: int = 3
    trust_snapshot_interval: float = 15 * 60
    # Кэши в Redis
    recent_message_ttl: int = 60 * 60
    ban_token_ttl: int = 12 * 60 * 60
    unban_attempts_ttl: int = 4 * 60 * 60
    processed_marker_ttl: int = 24 * 60 * 60
    # Поллинг
    poll_limit: int = 100
    poll_timeout: int = 100
    poll_retry_delay: float = 15.0
    cursor_save_every: int = 100

    @classmethod
    def from_config(cls) -> "ModerationSettings":
        return cls(
            admin_chat_id=ADMIN_CHAT_ID,
            data_dir=DATA_DIR,
            blacklist_auto_ban=BLACKLIST_AUTO_BAN,
            channel_auto_ban=CHANNEL_AUTO_BAN,
            low_confidence_forward=LOW_CONFIDENCE_HAM_FORWARD,
            low_confidence_threshold=LOW_CONFIDENCE_THRESHOLD,
            digest_hour=DIGEST_HOUR,
        )

    def data_path(self, name: str) -> str:
        return os.path.join(self.data_dir, name)


def describe_config() -> str:
    """Сводка конфигурации без секретов (для лога при старте)."""
    token = BOT_TOKEN or ""
    masked = "*" * max(len(token) - 4, 0) + token[-4:]
    return (
        f"ENVIRONMENT={ENVIRONMENT}, BOT_TOKEN={masked}, ADMIN_CHAT_ID={ADMIN_CHAT_ID}, "
        f"DATA_DIR={DATA_DIR}, REDIS_URL={REDIS_URL}, "
        f"BLACKLIST_AUTO_BAN={BLACKLIST_AUTO_BAN}, CHANNEL_AUTO_BAN={CHANNEL_AUTO_BAN}, "
        f"LOW_CONFIDENCE_HAM_FORWARD={LOW_CONFIDENCE_HAM_FORWARD}, "
        f"DIGEST_HOUR={DIGEST_HOUR}, CLUB_URL={'set' if CLUB_URL else 'NOT SET'}"
    )
