"""Per-request Confluence credential resolution.

Headers win over process defaults, but only when all three are supplied;
a partial header set never mixes with the defaults.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

from confluence_lib.errors import CredentialsRequired

BASE_URL_HEADER = "X-Confluence-Base-Url"
API_TOKEN_HEADER = "X-Confluence-Api-Token"
USER_EMAIL_HEADER = "X-Confluence-User-Email"
CREDENTIAL_HEADERS = (BASE_URL_HEADER, API_TOKEN_HEADER, USER_EMAIL_HEADER)

AUTH_REQUIRED_MESSAGE = (
    "Provide Confluence credentials via the request headers: "
    f"{BASE_URL_HEADER}, {API_TOKEN_HEADER}, {USER_EMAIL_HEADER}"
)


@dataclass(frozen=True)
class UserConfig:
    base_url: str
    api_token: str = field(repr=False)
    user_email: str

    def as_env(self) -> dict[str, str]:
        return {
            "CONFLUENCE_BASE_URL": self.base_url,
            "CONFLUENCE_API_TOKEN": self.api_token,
            "CONFLUENCE_USER_EMAIL": self.user_email,
        }


def _header(headers: Mapping[str, str], name: str) -> str:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return (value or "").strip()


def resolve_credentials(
    headers: Mapping[str, str],
    defaults: UserConfig | None = None,
) -> UserConfig | None:
    base_url = _header(headers, BASE_URL_HEADER)
    api_token = _header(headers, API_TOKEN_HEADER)
    user_email = _header(headers, USER_EMAIL_HEADER)
    if base_url and api_token and user_email:
        return UserConfig(base_url=base_url.rstrip("/"), api_token=api_token, user_email=user_email)
    return defaults


def require_credentials(
    headers: Mapping[str, str],
    defaults: UserConfig | None = None,
) -> UserConfig:
    resolved = resolve_credentials(headers, defaults)
    if resolved is None:
        raise CredentialsRequired(AUTH_REQUIRED_MESSAGE)
    return resolved


def optional_credentials(
    headers: Mapping[str, str],
    defaults: UserConfig | None = None,
) -> UserConfig | None:
    return resolve_credentials(headers, defaults)
