"""Random password generation from character-class options."""
import math
import string
import secrets

from pydantic import BaseModel, Field

CHAR_POOLS = {
    "uppercase": string.ascii_uppercase,
    "lowercase": string.ascii_lowercase,
    "numbers": string.digits,
    "symbols": string.punctuation,
}


class PasswordOptions(BaseModel):
    length: int = Field(default=20, ge=4, le=128)
    uppercase: bool = True
    lowercase: bool = True
    numbers: bool = True
    symbols: bool = True

    def pools(self) -> list[str]:
        """Character pools for the enabled classes, in a fixed order."""
        return [
            pool for name, pool in CHAR_POOLS.items() if getattr(self, name)
        ]


DEFAULT_OPTIONS = PasswordOptions()


def generate_password(options: PasswordOptions = DEFAULT_OPTIONS) -> str:
    """Generate a password with at least one character of every enabled class.

    With every class disabled the lowercase pool is used.
    """
    pools = options.pools() or [CHAR_POOLS["lowercase"]]
    alphabet = "".join(pools)
    chars = [secrets.choice(pool) for pool in pools]
    chars.extend(
        secrets.choice(alphabet) for _ in range(options.length - len(chars))
    )
    # Fisher-Yates with a CSPRNG
    for i in range(len(chars) - 1, 0, -1):
        j = secrets.randbelow(i + 1)
        chars[i], chars[j] = chars[j], chars[i]
    return "".join(chars)


def calculate_entropy(options: PasswordOptions) -> int:
    pool_size = sum(len(pool) for pool in options.pools())
    if pool_size == 0:
        return 0
    return math.floor(options.length * math.log2(pool_size))


def strength_label(entropy: int) -> str:
    if entropy < 40:
        return "Weak"
    if entropy < 60:
        return "Fair"
    if entropy < 80:
        return "Strong"
    return "Very Strong"
