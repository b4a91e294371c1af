# src/services/__init__.py
"""
HTTP-сервисы приложения.

Сервисы:
- marketplace: поездки, эскроу, кошельки, выплаты и уведомления
"""

__all__: list[str] = []
