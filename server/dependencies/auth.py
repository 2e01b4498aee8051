import hmac

from fastapi import Header, HTTPException, Request


async def verify_api_key(request: Request, x_api_key: str | None = Header(default=None)) -> None:
    """Rejects requests whose X-Api-Key header does not equal APP_API_KEY.

    Raises:
        HTTPException: 401 for a missing or wrong key.
    """
    expected_key = request.app.state.helper_config.get_string_val("APP_API_KEY")
    if not x_api_key or not hmac.compare_digest(x_api_key.encode(), expected_key.encode()):
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
