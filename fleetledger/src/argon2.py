from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError, InvalidHashError

passwordHasher = PasswordHasher(encoding="utf-8")


def makePassword(password: str) -> str:
    """Hash a plain-text password with Argon2, the hash is what `User.password` stores."""
    return passwordHasher.hash(password)


def checkPassword(password: str, actual_password: str) -> bool:
    """
    Verify a login attempt against the stored Argon2 hash.

    A malformed stored hash is treated as a mismatch so the caller
    answers with the same `InvalidCredentials` error.
    """
    try:
        passwordHasher.verify(actual_password, password)
        return True
    except (VerifyMismatchError, InvalidHashError):
        return False


def needsRehash(actual_password: str) -> bool:
    """True when the stored hash was made with outdated Argon2 parameters."""
    return passwordHasher.check_needs_rehash(actual_password)
