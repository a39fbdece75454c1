"""
Identity Backend - Password Hashing

One-way password hashing behind a small interface so the algorithm can be
swapped. The default implementation is bcrypt with a configurable work
factor.

Security:
- Never log or expose plaintext passwords
- bcrypt includes salt automatically
- Supports hash upgrades on login
"""

import bcrypt


# Work factor for bcrypt (2^12 = 4096 iterations)
# Decrease for faster tests
DEFAULT_WORK_FACTOR = 12


class BcryptHasher:
    """
    bcrypt password hasher.

    Example:
        >>> hasher = BcryptHasher(work_factor=4)
        >>> hashed = hasher.hash("SecureP@ss123")
        >>> hasher.verify("SecureP@ss123", hashed)
        True
    """

    def __init__(self, work_factor: int = DEFAULT_WORK_FACTOR):
        self.work_factor = work_factor

    def hash(self, password: str) -> str:
        """Hash a password; the result includes the salt."""
        salt = bcrypt.gensalt(rounds=self.work_factor)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    def verify(self, plain_password: str, hashed_password: str) -> bool:
        """
        Verify a password against a bcrypt hash.

        Uses constant-time comparison; malformed hashes never match.
        """
        try:
            return bcrypt.checkpw(
                plain_password.encode("utf-8"), hashed_password.encode("utf-8")
            )
        except (ValueError, TypeError):
            return False

    def needs_rehash(self, hashed_password: str) -> bool:
        """
        Check if a hash was produced with a lower work factor.

        bcrypt hash format: $2b$XX$... where XX is the work factor.
        """
        try:
            _, work_factor_str, _ = hashed_password.split("$")[1:4]
            return int(work_factor_str) < self.work_factor
        except (ValueError, IndexError):
            # Not a valid bcrypt hash, definitely needs rehash
            return True
