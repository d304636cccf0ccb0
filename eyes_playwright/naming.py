"""Shared naming utilities — derive stable, filesystem-safe keys from names."""

from __future__ import annotations

import hashlib
import re


def slugify(name: str) -> str:
    """Lowercase a name and collapse anything non-alphanumeric into dashes."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")
    return slug or "unnamed"


def name_key(name: str) -> str:
    """Generate a stable key from a display name.

    The hash suffix keeps names that slugify identically apart.
    """
    digest = hashlib.md5(name.encode()).hexdigest()[:8]
    return f"{slugify(name)[:40]}-{digest}"
