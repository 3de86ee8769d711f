"""Credential resolution for generation providers.

Precedence is fixed: a configured server-managed key always wins. A user key
sent with the request is only consulted when the server has none. Resolution
is pure; nothing here logs or stores the key itself.
"""

from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel

from studio.exceptions import CredentialInvalidError, CredentialMissingError, ServerCredentialInvalidError

PLACEHOLDER_KEYS = frozenset({"PLACEHOLDER_API_KEY", "YOUR_API_KEY", "your-api-key"})
DEFAULT_MIN_KEY_LENGTH = 20

CredentialSource = Literal["server", "user"]


def mask_key(key: str | None) -> str:
    """Show only the last 4 characters of a key."""
    if not key:
        return "<none>"
    return f"****{key[-4:]}" if len(key) > 4 else "****"


@dataclass(frozen=True)
class ResolvedCredential:
    source: CredentialSource
    key: str = field(repr=False)

    def __str__(self) -> str:
        return f"{self.source}:{mask_key(self.key)}"


class ConfigProbe(BaseModel):
    has_server_key: bool
    requires_user_key: bool
    mode: Literal["server-managed", "byok", "misconfigured"]


def _shape_problem(key: str, min_length: int) -> str | None:
    if key in PLACEHOLDER_KEYS:
        return "is a placeholder value"
    if len(key) < min_length:
        return "is too short"
    return None


def resolve_credential(
    server_key: str | None,
    user_key: str | None,
    *,
    min_length: int = DEFAULT_MIN_KEY_LENGTH,
) -> ResolvedCredential:
    """Pick the credential for one request.

    Raises:
        CredentialMissingError: no server key and no user key.
        CredentialInvalidError: the user key is malformed.
        ServerCredentialInvalidError: the server key is malformed. It never
            falls back to the user key, and prompting the user cannot fix it.
    """
    server_key = (server_key or "").strip()
    if server_key:
        problem = _shape_problem(server_key, min_length)
        if problem:
            raise ServerCredentialInvalidError(f"The server API key {problem}")
        return ResolvedCredential(source="server", key=server_key)

    user_key = (user_key or "").strip()
    if not user_key:
        raise CredentialMissingError()
    problem = _shape_problem(user_key, min_length)
    if problem:
        raise CredentialInvalidError(f"The user API key {problem}")
    return ResolvedCredential(source="user", key=user_key)


def config_probe(server_key: str | None, *, min_length: int = DEFAULT_MIN_KEY_LENGTH) -> ConfigProbe:
    """Tell the UI whether to ask for a user key, using the same rules as resolution.

    A configured but malformed server key is reported as ``misconfigured``:
    resolution will refuse every request and a user key would be ignored, so
    the UI must not prompt.
    """
    server_key = (server_key or "").strip()
    if not server_key:
        return ConfigProbe(has_server_key=False, requires_user_key=True, mode="byok")
    if _shape_problem(server_key, min_length):
        return ConfigProbe(has_server_key=False, requires_user_key=False, mode="misconfigured")
    return ConfigProbe(has_server_key=True, requires_user_key=False, mode="server-managed")
