"""Random, readable short codes."""

import secrets

SHORT_CODE_LENGTH = 6

# Characters that are easily confused (0/O, 1/l/I) are left out.
ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_short_code() -> str:
    """Return a random short code drawn from ALPHABET.

    Collisions are not checked here; callers must handle them.
    """
    return "".join(secrets.choice(ALPHABET) for _ in range(SHORT_CODE_LENGTH))