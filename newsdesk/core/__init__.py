"""
Newsdesk Core Package

Publishing, idempotency, delivery outbox and shared infrastructure.
"""
