"""
Rent Watch

A Telegram bot that keeps a standing apartment search per user, polls a
listings source on a schedule and sends each matching apartment only once.
"""

__version__ = "0.1.0"
__author__ = "Rent Watch Team"
