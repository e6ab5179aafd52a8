"""
Authentication package.

Exports the BearerAuth dependency, the TokenRegistry it resolves users
against, and the API_TOKENS parser.

CHANGELOG:
- 2026-10-19: Export TokenRegistry (STORY-112)
- 2026-10-10: Export parse_api_tokens (STORY-107)
- 2026-10-06: Initial creation (STORY-101)
"""

from runmetrics.auth.bearer import BearerAuth, TokenRegistry, parse_api_tokens

__all__ = ["BearerAuth", "TokenRegistry", "parse_api_tokens"]
