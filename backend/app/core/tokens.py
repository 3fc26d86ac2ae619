import math

# Roughly four characters per token for mixed Chinese/Portuguese legal text
CHARS_PER_TOKEN = 4


def count_tokens(text: str) -> int:
    """Approximate token count for a plain string."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_request_tokens(text: str, overhead: int, multiplier: int = 1) -> int:
    """Pre-flight cost estimate: heuristic count plus fixed overhead, scaled for the model tier."""
    return (count_tokens(text) + overhead) * multiplier
