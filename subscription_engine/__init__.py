"""
Subscription detection and unsubscribe orchestration engine.

Classifies senders in a user's mailbox as subscriptions, scores them from
weak signals, resolves the best unsubscribe method and executes it.
"""

__version__ = '0.7.0'
