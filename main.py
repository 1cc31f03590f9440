#!/usr/bin/env python3
"""
Запуск антиспам-бота из корня репозитория без установки пакета
(python main.py или кнопка Play в IDE).
"""

import os
import sys

# Пакет doorman лежит рядом с этим файлом
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

if __name__ == "__main__":
    try:
        # config проверяет обязательные переменные при импорте
        from doorman.bot import run
        run()
    except ValueError as e:
        # Ошибки конфигурации: BOT_TOKEN, ADMIN_CHAT_ID и т.п.
        print(f"❌ Ошибка конфигурации: {e}")
        sys.exit(1)
