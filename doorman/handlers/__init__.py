# Импорт всех роутеров для удобного подключения
from aiogram import Router

from .admin_chat import admin_chat_router
from .callbacks import callbacks_router
from .chat_members import chat_members_router
from .group_messages import group_messages_router

# Объединяем все роутеры в один
handlers_router = Router()
# Команды админского чата ПЕРВЫМИ: админский чат может быть группой
handlers_router.include_router(admin_chat_router)
handlers_router.include_router(callbacks_router)
handlers_router.include_router(chat_members_router)
handlers_router.include_router(group_messages_router)

__all__ = ["handlers_router"]
