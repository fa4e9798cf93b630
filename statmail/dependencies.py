import hmac
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from statmail.config import AppConfig, Settings, get_config, get_settings
from statmail.core.database import get_db

# Type aliases for dependency injection
DBSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Config = Annotated[AppConfig, Depends(get_config)]


async def require_job_token(
    settings: AppSettings,
    authorization: str | None = Header(default=None),
) -> None:
    """Require `Authorization: Bearer <JOB_TOKEN>` when a job token is configured."""
    if not settings.job_token:
        return

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token, settings.job_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid job token",
        )


JobAuth = Annotated[None, Depends(require_job_token)]
