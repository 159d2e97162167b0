import hmac
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, Optional

from paysim.audit.logger import StructuredLogger
from paysim.payment.errors import Unauthenticated, Unauthorized
from paysim.security.redaction import truncate_key


@dataclass(frozen=True)
class ApiKeyIdentity:
    id: str
    truncatedKey: str


class KeyAuthenticator:
    """
    Checks a presented API key against the configured allow-list.
    The identity it returns is for audit only.
    """

    def __init__(self, allowed_keys: Iterable[str], audit: StructuredLogger):
        self._allowed: FrozenSet[str] = frozenset(allowed_keys)
        self.audit = audit

    def _matches(self, presented: str) -> bool:
        return any(hmac.compare_digest(presented.encode(), key.encode()) for key in self._allowed)

    def authenticate(self, presented: Optional[str],
                     request: Optional[Dict[str, Any]] = None) -> ApiKeyIdentity:
        if not presented:
            self.audit.security_event("missing_api_key", request, severity="medium")
            raise Unauthenticated("API key required. Provide it via the x-api-key header or apiKey query parameter.")

        if not self._matches(presented):
            self.audit.security_event("invalid_api_key", request, severity="high",
                                      providedKey=truncate_key(presented))
            raise Unauthorized("Invalid API key")

        identity = ApiKeyIdentity(id=presented[:8], truncatedKey=truncate_key(presented))
        self.audit.security_event("api_key_authenticated", request, severity="low",
                                  keyId=identity.id, providedKey=identity.truncatedKey)
        return identity
