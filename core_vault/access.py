"""
Owner Access Control

A vault has exactly one owner identity, fixed at construction. No ledger
mutation is owner-restricted; the check guards administrative endpoints
such as audit verification and dev funding. An account may only act on
its own token allowance.
"""

from typing import Optional

from .errors import Unauthorized


def is_authorized(caller: Optional[str], owner: str) -> bool:
    """Check whether caller is the configured owner"""
    return bool(caller) and caller == owner


def require_owner(caller: Optional[str], owner: str) -> None:
    """Raise Unauthorized unless caller is the owner"""
    if not is_authorized(caller, owner):
        raise Unauthorized(caller)


def require_caller(caller: Optional[str], account: str) -> None:
    """Raise Unauthorized unless caller is acting for its own account"""
    if not is_authorized(caller, account):
        raise Unauthorized(caller)
