# src/services/marketplace/__init__.py
"""HTTP-сервис маркетплейса: поездки, кошельки, выплаты, уведомления."""
