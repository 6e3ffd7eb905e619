from __future__ import annotations

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.exceptions import NotAuthenticatedError
from caseflow.core.security import Identity, bearer_scheme, decode_access_token
from caseflow.crud.users import get_user
from caseflow.db.session import get_db


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Identity:
    """
    Unauthenticated -> Authenticated.
    The token is minted by the auth collaborator; here it is only verified.
    """
    if credentials is None:
        raise NotAuthenticatedError()

    identity = decode_access_token(credentials.credentials)

    user = await get_user(db, identity.user_id)
    if user is None:
        raise NotAuthenticatedError("User not found")
    if not user.is_active:
        raise NotAuthenticatedError("User inactive")

    return identity
