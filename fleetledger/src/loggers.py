from sqlalchemy.orm.session import Session
from sqlalchemy.orm import DeclarativeMeta

from fleetledger.src import openobserve
from fleetledger.src.db import AuditLog, User
from fleetledger.src.enums import UserRole
from fleetledger.src.schemas import RequestInfo


def auditEvent(
    session: Session,
    user: User,
    requestInfo: RequestInfo,
    entity: DeclarativeMeta,
    data: dict,
) -> AuditLog:
    """
    Append an audit log row describing a mutation and commit it.

    Args:
        session (Session): The session of the request, already committed.
        user (User): The actor.
        requestInfo (RequestInfo): Method and path of the request.
        entity (DeclarativeMeta): Model class of the affected row.
        data (dict): JSON ready snapshot of the affected row.
    """
    auditLog = AuditLog(
        actor_id=user.id,
        action=requestInfo.method,
        entity_type=entity.__tablename__,
        entity_id=data.get("id"),
        description=requestInfo.path,
        details=data,
    )
    session.add(auditLog)
    session.commit()
    return auditLog


def logEvent(
    user: User,
    requestInfo: RequestInfo,
    data: dict,
    session: Session = None,
    entity: DeclarativeMeta = None,
) -> None:
    """
    Record an event with request and user context.

    The event always goes to OpenObserve. When a session and the model of
    the affected row are given, an audit log row is written as well.

    Notes:
        - Attaches `_method`, `_path`, `_user_id` and `_role` to the event.
        - The audit row is committed before the event is shipped.
    """
    if session is not None and entity is not None:
        auditEvent(session, user, requestInfo, entity, data)

    logDetails = {
        "_method": requestInfo.method,
        "_path": requestInfo.path,
        "_user_id": user.id,
        "_role": UserRole(user.role).name,
    }
    logDetails.update(data)
    openobserve.logEvent(logDetails)
