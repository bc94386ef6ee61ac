"""
Request dependencies: the shared system instance and the requester identity
"""

import threading
from typing import Optional

from fastapi import Header, HTTPException, status

from ..system import BankingSystem


_system: Optional[BankingSystem] = None
_system_lock = threading.Lock()


def get_banking_system() -> BankingSystem:
    """Lazily build the global system from configuration"""
    global _system
    with _system_lock:
        if _system is None:
            _system = BankingSystem()
        return _system


def get_requester_id(x_user_id: Optional[str] = Header(None)) -> str:
    """
    Identity of the authenticated caller.

    Token verification happens upstream; the gateway forwards the verified
    user id in the X-User-Id header.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Missing X-User-Id header")
    return x_user_id.strip()
