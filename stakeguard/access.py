"""
StakeGuard Administrator Capabilities

Mutating administrative calls take an explicit ``AdminCapability`` argument
instead of relying on an ambient "owner" identity. Capabilities are issued
and revoked by a ``CapabilityAuthority`` owned by the engine.
"""

import hmac
import secrets
import threading
from dataclasses import dataclass, field
from typing import Dict, Optional

from .exceptions import AuthorizationViolation
from .logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class AdminCapability:
    """Bearer token granting administrator rights on one engine."""
    holder: str
    token: str = field(repr=False)


class CapabilityAuthority:
    """
    Issues, verifies and revokes administrator capabilities.

    One capability per holder; re-issuing replaces the previous token.
    """

    def __init__(self):
        self._tokens: Dict[str, str] = {}  # holder -> token
        self._lock = threading.Lock()

    def issue(self, holder: str) -> AdminCapability:
        if not holder:
            raise AuthorizationViolation("Capability holder must be non-empty")
        token = secrets.token_hex(32)
        with self._lock:
            self._tokens[holder] = token
        logger.info(f"Administrator capability issued to {holder}")
        return AdminCapability(holder=holder, token=token)

    def revoke(self, holder: str) -> bool:
        with self._lock:
            removed = self._tokens.pop(holder, None) is not None
        if removed:
            logger.info(f"Administrator capability revoked for {holder}")
        return removed

    def is_valid(self, capability: Optional[AdminCapability]) -> bool:
        if not isinstance(capability, AdminCapability):
            return False
        with self._lock:
            expected = self._tokens.get(capability.holder)
        if expected is None:
            return False
        return hmac.compare_digest(expected, capability.token)

    def require(self, capability: Optional[AdminCapability], operation: str) -> str:
        """
        Verify ``capability`` for ``operation``.

        Returns:
            The holder name, for audit entries.

        Raises:
            AuthorizationViolation: If the capability is missing, forged or revoked.
        """
        if not self.is_valid(capability):
            holder = getattr(capability, "holder", None)
            logger.warning(f"Unauthorized {operation} attempt (holder={holder})")
            raise AuthorizationViolation(
                f"{operation} requires a valid administrator capability"
            )
        return capability.holder

    @property
    def holders(self):
        with self._lock:
            return sorted(self._tokens)
