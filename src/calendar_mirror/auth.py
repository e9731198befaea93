"""
Calendar store authorization state.
"""

import enum
import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class AuthState(enum.Enum):
    UNREQUESTED = "unrequested"
    PENDING = "pending"
    AUTHORIZED = "authorized"
    DENIED = "denied"


class AuthorizationGate:
    """Tri-state gate checked before every run.

    ``request()`` is the only transition; it asks an external capability
    check once and never prompts on its own.
    """

    def __init__(self, state: AuthState = AuthState.UNREQUESTED):
        self._state = state
        self._lock = threading.Lock()

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def authorized(self) -> bool:
        return self._state is AuthState.AUTHORIZED

    def request(self, check: Callable[[], bool]) -> AuthState:
        """Move UNREQUESTED -> PENDING -> AUTHORIZED/DENIED using ``check``.

        Calls after the first transition return the current state unchanged.
        A check that raises counts as a denial.
        """
        with self._lock:
            if self._state is not AuthState.UNREQUESTED:
                return self._state
            self._state = AuthState.PENDING

        try:
            ok = bool(check())
        except Exception as e:
            logger.error(f"Authorization check failed: {e}")
            ok = False

        self._state = AuthState.AUTHORIZED if ok else AuthState.DENIED
        logger.debug("Calendar access %s", self._state.value)
        return self._state
