"""
passwords.py – Password generation and strength rating.

generate_password() draws from the OS CSPRNG and always contains at least
one lowercase letter, one uppercase letter, one digit and one symbol.
check_password_strength() gives a 1–4 score with a label for display next
to the password field.
"""

import math
import re
import secrets
import string
from typing import Tuple

from config import MIN_LENGTH

LOWERCASE = string.ascii_lowercase
UPPERCASE = string.ascii_uppercase
DIGITS = string.digits
SYMBOLS = "!@#$%^&*()-_=+"

STRENGTH_LABELS = ("Weak", "Fair", "Good", "Strong")

_rng = secrets.SystemRandom()


def generate_password(length: int = MIN_LENGTH) -> str:
    """
    Return a random password of *length* characters.

    Raises ValueError if *length* is too short to hold one character of
    each class.
    """
    classes = (LOWERCASE, UPPERCASE, DIGITS, SYMBOLS)
    if length < len(classes):
        raise ValueError(f"Password length must be at least {len(classes)}.")

    pool = "".join(classes)
    chars = [secrets.choice(cls) for cls in classes]
    chars.extend(secrets.choice(pool) for _ in range(length - len(chars)))
    _rng.shuffle(chars)
    return "".join(chars)


def check_password_strength(password: str) -> Tuple[int, str]:
    """
    Score *password* from 1 (Weak) to 4 (Strong).

    One point for 12+ characters, half a point for each character class
    present, minus half a point for '123'/'abc' runs and a full point for
    'password'/'qwerty'.  The result is rounded and clamped to 1–4.
    """
    score = 0.0
    if len(password) >= 12:
        score += 1
    for pattern in (r"[a-z]", r"[A-Z]", r"[0-9]", r"[^a-zA-Z0-9]"):
        if re.search(pattern, password):
            score += 0.5

    if "123" in password or "abc" in password:
        score -= 0.5
    if re.search(r"password|qwerty", password, re.IGNORECASE):
        score -= 1

    # Halves round up.
    rounded = math.floor(score + 0.5)
    final = max(1, min(4, rounded))
    return final, STRENGTH_LABELS[final - 1]
