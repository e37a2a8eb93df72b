"""Broker routers package"""

from services.broker.routers import admin, messaging

__all__ = ['admin', 'messaging']
