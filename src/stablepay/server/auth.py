# src/stablepay/server/auth.py
from dataclasses import dataclass, field
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request, status

ADMIN = "admin"
PERMISSIONS = (ADMIN, "payment:create", "payment:verify", "payment:status", "payment:balance")


# --- 1. Key record ---
@dataclass(frozen=True)
class ApiKey:
    key: str
    permissions: frozenset = field(default_factory=frozenset)

    @property
    def name(self) -> str:
        return f"key-{self.key[:8]}"

    @property
    def fingerprint(self) -> str:
        # stored in payment metadata, never the full key
        return self.key[:8] + "..."

    @property
    def is_admin(self) -> bool:
        return ADMIN in self.permissions

    def allows(self, permission: Optional[str]) -> bool:
        return permission is None or self.is_admin or permission in self.permissions


def load_api_keys(raw: dict[str, list[str]]) -> dict[str, ApiKey]:
    return {key: ApiKey(key=key, permissions=frozenset(perms)) for key, perms in raw.items()}


# --- 2. Helpers ---
def _extract_key(x_api_key: Optional[str], authorization: Optional[str]) -> Optional[str]:
    if x_api_key:
        return x_api_key.strip()
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    return None


# --- 3. FastAPI dependency ---
def require_permission(permission: Optional[str] = None):
    """
    Dependency factory: accepts the key from `X-API-Key` or
    `Authorization: Bearer <key>` and checks it grants `permission`.
    """

    async def _dependency(
        request: Request,
        x_api_key: Annotated[Optional[str], Header()] = None,
        authorization: Annotated[Optional[str], Header()] = None,
    ) -> ApiKey:
        supplied = _extract_key(x_api_key, authorization)
        if not supplied:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="API key required. Provide it in X-API-Key header or Authorization: Bearer <key>",
                headers={"WWW-Authenticate": "Bearer"},
            )
        api_key = request.app.state.api_keys.get(supplied)
        if api_key is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")
        if not api_key.allows(permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission '{permission}' required",
            )
        return api_key

    return Depends(_dependency)
