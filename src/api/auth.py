from fastapi import Header, HTTPException

from settings import get_settings


def verify_api_key(x_api_key: str = Header(...)) -> str:
    """Validates API key from X-API-Key header."""
    if x_api_key != get_settings().api.key:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return x_api_key
