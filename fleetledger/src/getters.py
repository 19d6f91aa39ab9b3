from fastapi import Request
from sqlalchemy.orm.session import Session

from fleetledger.src import schemas, exceptions
from fleetledger.src.db import User, UserToken


def requestInfo(request: Request) -> schemas.RequestInfo:
    """
    Extract metadata about the incoming request.

    Returns:
        schemas.RequestInfo: Pydantic model containing:
            - method (str): HTTP method (GET, POST, etc.).
            - path (str): Path portion of the request URL.
    """
    return schemas.RequestInfo(method=request.method, path=request.url.path)


def tokenUser(token: UserToken, session: Session) -> User:
    """
    Fetch the account behind a validated token.

    Raises:
        exceptions.InactiveAccount: If the account was deactivated after
            the token was issued.
    """
    user = session.query(User).filter(User.id == token.user_id).first()
    if user is None:
        raise exceptions.InvalidToken()
    if not user.is_active:
        raise exceptions.InactiveAccount()
    return user
