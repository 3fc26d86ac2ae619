from typing import Any, Literal

from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from loguru import logger

from app.config import get_settings
from app.db import postgres

# auto_error=False so a missing header is a 401 like any other bad credential
bearer_scheme = HTTPBearer(auto_error=False)

Feature = Literal["search", "qa", "consultant", "pro_model"]

USER_COLUMNS = "id::text AS id, email, role, remaining_tokens, tokens_used, created_at, updated_at"


def decode_token(token: str) -> dict[str, Any]:
    """Verify an access token issued by the hosted identity provider."""
    settings = get_settings()
    try:
        return jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


async def get_or_create_profile(user_id: str, email: str | None) -> dict:
    user = await postgres.fetch_one(
        f"SELECT {USER_COLUMNS} FROM users WHERE id = $1::uuid",
        user_id,
    )
    if user:
        return dict(user)

    settings = get_settings()
    created = await postgres.fetch_one(
        f"""INSERT INTO users (id, email, role, remaining_tokens, tokens_used)
            VALUES ($1::uuid, $2, 'free_tier', $3, 0)
            ON CONFLICT (id) DO UPDATE SET email = EXCLUDED.email
            RETURNING {USER_COLUMNS}""",
        user_id,
        email or "",
        settings.default_free_tokens,
    )
    logger.info("Created profile for user {} ({} tokens)", user_id, settings.default_free_tokens)
    return dict(created)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials)
    user_id: str | None = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    return await get_or_create_profile(user_id, payload.get("email"))


def has_feature_access(user: dict, feature: Feature) -> bool:
    role = user.get("role")
    if feature in ("search", "qa"):
        return True
    if feature == "consultant":
        return role in ("pay_tier", "vip_tier", "admin")
    if feature == "pro_model":
        return role in ("vip_tier", "admin")
    return False


def has_tokens(user: dict, required: int) -> bool:
    return (user.get("remaining_tokens") or 0) >= required


def reject(status_code: int, error: str, message: str) -> HTTPException:
    """Structured pre-flight rejection, raised before any response body is produced."""
    return HTTPException(status_code=status_code, detail={"error": error, "message": message})


def require_feature(user: dict, feature: Feature) -> None:
    if not has_feature_access(user, feature):
        raise reject(status.HTTP_403_FORBIDDEN, "feature_denied", f"Access denied for feature '{feature}'")


def require_tokens(user: dict, required: int) -> None:
    if not has_tokens(user, required):
        raise reject(
            status.HTTP_402_PAYMENT_REQUIRED,
            "insufficient_tokens",
            f"Insufficient tokens: {required} required, {user.get('remaining_tokens') or 0} remaining",
        )


def require_text(text: str, max_chars: int, field: str = "message") -> None:
    if not text or not text.strip():
        raise reject(status.HTTP_400_BAD_REQUEST, f"{field}_required", f"{field.capitalize()} is required")
    if len(text) > max_chars:
        raise reject(
            status.HTTP_400_BAD_REQUEST,
            f"{field}_too_long",
            f"{field.capitalize()} too long (max {max_chars} characters)",
        )
