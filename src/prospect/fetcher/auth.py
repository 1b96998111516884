"""
Translation of an :class:`AuthDescriptor` into concrete request material.

Both the HTTP client and the browser pool consume the same
:class:`AuthMaterial`, so every fetch method authenticates identically.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from prospect.protocols import AuthDescriptor, AuthType


@dataclass
class AuthMaterial:
    headers: Dict[str, str] = field(default_factory=dict)
    basic: Optional[Tuple[str, str]] = None
    cookies: Dict[str, str] = field(default_factory=dict)

    def cookie_header(self) -> Optional[str]:
        if not self.cookies:
            return None
        return "; ".join(f"{name}={value}" for name, value in self.cookies.items())

    def request_headers(self) -> Dict[str, str]:
        """Headers to send on a plain HTTP request, Authorization and Cookie included."""
        headers = dict(self.headers)
        if self.basic is not None:
            token = base64.b64encode(f"{self.basic[0]}:{self.basic[1]}".encode()).decode("ascii")
            headers["Authorization"] = f"Basic {token}"
        cookie = self.cookie_header()
        if cookie:
            headers["Cookie"] = cookie
        return headers


def resolve_auth(auth: Optional[AuthDescriptor]) -> AuthMaterial:
    if auth is None:
        return AuthMaterial()

    creds = auth.as_mapping()
    if auth.type is AuthType.BASIC:
        return AuthMaterial(basic=(creds["username"], creds.get("password", "")))
    if auth.type is AuthType.BEARER:
        return AuthMaterial(headers={"Authorization": f"Bearer {creds['token']}"})
    if auth.type is AuthType.COOKIES:
        return AuthMaterial(cookies=creds)
    return AuthMaterial(headers=creds)
