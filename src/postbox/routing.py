"""Actor id to mailbox directory name translation."""

from __future__ import annotations

import hashlib
from functools import lru_cache


@lru_cache(maxsize=4096)
def mailbox_name(actor_id: str) -> str:
    """Return the directory name holding *actor_id*'s mailbox.

    The name is the MD5 hex digest of the id, so it has a fixed length and
    never contains path separators regardless of what the id holds.

    Examples
    --------
    >>> len(mailbox_name("../../etc/passwd"))
    32
    """
    return hashlib.md5(actor_id.encode("utf-8"), usedforsecurity=False).hexdigest()
