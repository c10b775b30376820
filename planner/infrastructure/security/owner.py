"""
Owner resolution - maps a bearer token to the owner identity

Tokens are looked up in the configured token table. Only when development
mode is switched on explicitly is an unknown bearer token taken as the owner
id itself.
"""

from typing import Dict, Optional
import structlog

from planner.domain.models.session_state import Owner

logger = structlog.get_logger(__name__)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Pull the token out of an "Authorization: Bearer <token>" header"""

    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def parse_token_table(raw: Optional[str]) -> Dict[str, str]:
    """Parse "token:owner,token:owner" into a token table"""

    tokens = {}
    for entry in (raw or "").split(","):
        entry = entry.strip()
        if not entry:
            continue
        token, sep, owner_id = entry.partition(":")
        if not sep or not token.strip() or not owner_id.strip():
            raise ValueError(f"Invalid owner token entry {entry!r}, expected 'token:owner'")
        tokens[token.strip()] = owner_id.strip()
    return tokens


class OwnerResolver:
    """Resolves the authenticated owner for a request"""

    def __init__(self, tokens: Optional[Dict[str, str]] = None, development_mode: bool = False):
        self.tokens = dict(tokens or {})
        self.development_mode = development_mode

        if development_mode:
            logger.warning("Development owner resolution enabled: bearer tokens are trusted as owner ids")
        elif not self.tokens:
            logger.warning("No owner tokens configured: every request will be rejected")

    def resolve(self, authorization: Optional[str]) -> Owner:
        """
        Resolve the owner behind an Authorization header

        Args:
            authorization: raw header value

        Returns:
            The owner identity

        Raises:
            ValueError: If the token is missing or unknown
        """

        token = extract_bearer_token(authorization)
        if not token:
            raise ValueError("No token provided")

        owner_id = self.tokens.get(token)
        if owner_id:
            return Owner(id=owner_id)

        if self.development_mode:
            logger.debug("Development owner resolution", token_prefix=token[:10])
            return Owner(id=token)

        logger.warning("Unknown bearer token", token_prefix=token[:10])
        raise ValueError("Unknown token")
