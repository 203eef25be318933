"""
Subscriber email addresses.
"""

from dataclasses import dataclass

from email_validator import EmailNotValidError, validate_email

from ..errors import ValidationError


@dataclass(frozen=True)
class SubscriberEmail:
    """A syntactically valid email address."""

    value: str

    @classmethod
    def parse(cls, raw: str) -> "SubscriberEmail":
        """
        Validate an address without any DNS lookup.

        The stored form is kept as given so it still matches the queue's
        primary key.
        """
        try:
            validate_email(raw or "", check_deliverability=False)
        except EmailNotValidError as e:
            raise ValidationError(f"{raw!r} is not a valid subscriber email: {e}", field="email") from e
        return cls(raw)

    def __str__(self) -> str:
        return self.value
