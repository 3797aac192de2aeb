"""
                        Services Module

Business logic of the order pipeline. Collaborators with infrastructure
behind them have an in-process implementation (development, tests) and a
real one (production), chosen by configuration.

Services:
    - store: Order persistence and change feed (memory / SQL)
    - notifications: Topic publishing (mock / Redis / Celery)
    - checkpoints: Feed cursor persistence (memory / file)
    - ingress: Order creation
    - dispatcher: Status notifications with retry
"""

from orderflow.services.dispatcher import NotificationDispatcher
from orderflow.services.ingress import OrderIngress

__all__ = ["NotificationDispatcher", "OrderIngress"]
