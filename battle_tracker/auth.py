from __future__ import annotations
from typing import Optional
from fastapi import Security
from fastapi.security import APIKeyHeader
from battle_tracker.config import settings
from battle_tracker.exceptions import AuthenticationError


_eclesiar_key_header = APIKeyHeader(name="X-Eclesiar-Key", auto_error=False)


async def header_credential(
    api_key: str | None = Security(_eclesiar_key_header),
) -> Optional[str]:
    return api_key or None


def resolve_credential(body_key: Optional[str], header_key: Optional[str]) -> str:
    """Key used for upstream calls: request body, then header, then configured default."""
    credential = body_key or header_key or settings.ECLESIAR_API_KEY
    if not credential:
        raise AuthenticationError("No Eclesiar API key supplied")
    return credential
