"""
Newsdesk: idempotent newsletter publishing with a transactional delivery outbox.
"""

__version__ = "0.1.0"
