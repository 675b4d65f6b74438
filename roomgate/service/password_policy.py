from __future__ import annotations

import re
from typing import List, Optional, Protocol

from roomgate.storage.models import User

_SPECIAL = re.compile(r"[^A-Za-z0-9\s]")


class PasswordPolicy(Protocol):
    def validate(self, password: Optional[str], context: User) -> List[str]:
        """Return one message per violated rule; an empty list means pass."""
        ...


class StrongPasswordPolicy:
    """Length, character-class and identity checks for new account passwords."""

    def __init__(self, min_length: int = 8) -> None:
        self.min_length = min_length

    def validate(self, password: Optional[str], context: User) -> List[str]:
        password = password or ""
        messages: List[str] = []
        if len(password) < self.min_length:
            messages.append(f"password must be at least {self.min_length} characters long")
        if not any(c.islower() for c in password):
            messages.append("password must contain a lowercase letter")
        if not any(c.isupper() for c in password):
            messages.append("password must contain an uppercase letter")
        if not any(c.isdigit() for c in password):
            messages.append("password must contain a digit")
        if not _SPECIAL.search(password):
            messages.append("password must contain a special character")
        lowered = password.lower()
        if context.login and len(context.login) >= 3 and context.login.lower() in lowered:
            messages.append("password must not contain the login")
        local_part = (context.email or "").partition("@")[0].lower()
        if len(local_part) >= 3 and local_part in lowered:
            messages.append("password must not contain the email address")
        return messages
