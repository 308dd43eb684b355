"""
Infinite Pages - AI-assisted story generation with subscriptions, credits and creator payouts
"""
__version__ = "0.1.0"
