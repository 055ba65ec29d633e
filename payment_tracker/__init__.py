"""
Payment Tracker - Source Package

Core of a personal/organizational payment tracker: turns recurring
payment definitions into dated, pending occurrences.

DESIGN PRINCIPLES:
1. Generation is idempotent - running it again never duplicates a payment
2. Cursors only move forward
3. Failures degrade to "try again next time", never to an exception
4. Every pass is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Payment Tracker Team"
