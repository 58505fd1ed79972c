"""
Asset Tracker - multi-tenant NFC asset lifecycle backend
"""

__version__ = "1.0.0"
