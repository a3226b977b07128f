"""
Wallet address and transaction hash normalization.
Addresses are case-insensitive hex, so every Store key is lower-cased.
"""


def normalize_address(value: str) -> str:
    """Lower-case and strip a wallet address or transaction hash."""
    return value.strip().lower()


def mask_secret(value: str, prefix: int = 12, suffix: int = 4) -> str:
    """Show only the ends of a secret, e.g. 'clodds_1a2b3...9f0e'."""
    if len(value) <= prefix + suffix:
        return value[:prefix] + "..."
    return f"{value[:prefix]}...{value[-suffix:]}"
