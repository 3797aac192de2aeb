"""
                Order Lifecycle Service

Accepts food orders, persists them, and moves each one from PREPARING to
OUT_FOR_DELIVERY through a change-feed driven worker that notifies
topic subscribers on the transition.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
