"""Content hashing and identifier generation for annotations."""

import hashlib
import re
import uuid

_WHITESPACE = re.compile(r"\s+")


def normalize_content(content: str) -> str:
    """Case-fold and collapse whitespace so cosmetic edits hash the same.

    Example:
        >>> normalize_content("  Small  habits\\ncompound. ")
        'small habits compound.'
    """
    return _WHITESPACE.sub(" ", content.casefold()).strip()


def content_hash(content: str) -> str:
    """
    Generate a deterministic SHA256 hash of annotation text.

    The hash is computed over ``normalize_content(content)``; differences in
    case or whitespace therefore do not count as a content change.

    Args:
        content: Annotation body text

    Returns:
        SHA256 hex digest prefixed with "sha256:"
    """
    digest = hashlib.sha256(normalize_content(content).encode("utf-8"))
    return f"sha256:{digest.hexdigest()}"


def new_id(prefix: str) -> str:
    """Generate a random record id such as ``note:3f2c...``."""
    return f"{prefix}:{uuid.uuid4().hex}"
