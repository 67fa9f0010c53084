"""Shared-secret checks for machine callers (scheduler, platform admin tooling)"""

import secrets
from typing import Optional


def verify_shared_secret(provided: Optional[str], expected: str) -> bool:
    """
    Constant-time comparison of a presented secret against the configured one.

    An unset expected secret never matches, so an unconfigured deployment
    rejects every caller instead of admitting everyone.
    """
    if not expected or not provided:
        return False
    return secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
