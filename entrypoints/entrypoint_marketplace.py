#!/usr/bin/env python3
"""
Entrypoint для сервиса маркетплейса.

Запуск:
    python entrypoints/entrypoint_marketplace.py

Порт по умолчанию: 8085
"""

import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from src.config import settings


def main() -> None:
    """Запустить сервис маркетплейса."""
    uvicorn.run(
        "src.services.marketplace.app:app",
        host=settings.deployment.MARKETPLACE_HOST,
        port=settings.deployment.MARKETPLACE_PORT,
        reload=settings.system.DEBUG,
        log_level=settings.logging.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
