"""
Dashboard API token authentication.

API_TOKENS lists ``token:user_id`` pairs. A user may hold several tokens (one
per dashboard deployment), but a token belongs to exactly one user. The
TokenRegistry keeps only SHA-256 digests of the configured tokens, so a
presented token is hashed and looked up rather than compared against each
secret. The resolved user id feeds the organization membership check of the
metrics route.

CHANGELOG:
- 2026-10-19: Hash tokens into a TokenRegistry, reject tokens mapped to two
  users, parse the Authorization header directly (STORY-112)
- 2026-10-10: Resolve tokens to dashboard user ids (STORY-107)
- 2026-10-06: Initial creation (STORY-101)

TODO:
- None
"""

import hashlib
import logging
from collections.abc import Mapping

from fastapi import HTTPException, Request
from fastapi.security.utils import get_authorization_scheme_param

logger = logging.getLogger(__name__)


def _digest(token: str) -> bytes:
    return hashlib.sha256(token.encode("utf-8")).digest()


def parse_api_tokens(raw: str) -> dict[str, str]:
    """Parse ``token:user_id`` pairs separated by commas.

    Blank entries are ignored. Entries missing a colon, a token or a user id
    are skipped with a warning naming their position.

    Raises:
        ValueError: If one token is assigned to two different users.
    """
    token_map: dict[str, str] = {}
    for position, entry in enumerate(raw.split(",")):
        if not entry.strip():
            continue
        token, separator, user_id = entry.partition(":")
        token, user_id = token.strip(), user_id.strip()
        if not separator or not token or not user_id:
            logger.warning(
                "Skipping malformed API_TOKENS entry at position %d", position
            )
            continue
        owner = token_map.setdefault(token, user_id)
        if owner != user_id:
            raise ValueError(
                f"API_TOKENS entry at position {position} reassigns a token "
                f"from user '{owner}' to '{user_id}'"
            )
    return token_map


class TokenRegistry:
    """Resolves bearer tokens to dashboard user ids.

    Args:
        token_map: Mapping of token -> user_id, as returned by
            parse_api_tokens().
    """

    def __init__(self, token_map: Mapping[str, str]) -> None:
        self._users = {_digest(token): user for token, user in token_map.items()}

    @classmethod
    def from_setting(cls, raw: str) -> "TokenRegistry":
        return cls(parse_api_tokens(raw))

    def __len__(self) -> int:
        return len(self._users)

    @property
    def user_ids(self) -> frozenset[str]:
        return frozenset(self._users.values())

    def resolve(self, token: str) -> str | None:
        """Return the user the token was issued to, or None."""
        if not token:
            return None
        return self._users.get(_digest(token))


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


class BearerAuth:
    """FastAPI dependency turning ``Authorization: Bearer`` into a user id."""

    def __init__(self, registry: TokenRegistry) -> None:
        self.registry = registry

    async def verify(self, request: Request) -> str:
        """Return the requesting user's id and record it on request.state.

        Raises:
            HTTPException: 401 if the header is missing, uses another scheme,
                or carries an unknown token.
        """
        scheme, token = get_authorization_scheme_param(
            request.headers.get("Authorization")
        )
        if scheme.lower() != "bearer" or not token:
            raise _unauthorized("Missing authorization credentials.")

        user_id = self.registry.resolve(token)
        if user_id is None:
            logger.info(
                "Rejected bearer token for %s %s", request.method, request.url.path
            )
            raise _unauthorized("Invalid or expired token.")

        request.state.user_id = user_id
        return user_id
