"""
Email delivery: address validation and the email service client.
"""

from .address import SubscriberEmail
from .client import EmailClient

__all__ = ["SubscriberEmail", "EmailClient"]
