from __future__ import annotations


_PASSTHROUGH = frozenset("abcdefghijklmnopqrstuvwxyz0123456789 -_")


def encode_category_name(name: str) -> str:
    """Map a category display name to the key used for its color preference.

    The name is lowercased and every character outside ``a-z``, ``0-9``,
    space, ``-`` and ``_`` is written as ``-ux<hex codepoint>-``.
    """
    encoded: list[str] = []
    for char in str(name or "").lower():
        if char in _PASSTHROUGH:
            encoded.append(char)
        else:
            encoded.append(f"-ux{ord(char):x}-")
    return "".join(encoded)
