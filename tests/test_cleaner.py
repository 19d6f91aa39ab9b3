from datetime import datetime, timedelta, timezone

from fleetledger.src.cleaner import removeExpiredTokens
from fleetledger.src.db import UserToken


def test_only_expired_tokens_are_removed(session, worker):
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    session.add_all(
        [
            UserToken(user_id=worker.id, expires_in=60, expires_at=now - timedelta(days=1)),
            UserToken(user_id=worker.id, expires_in=60, expires_at=now - timedelta(seconds=1)),
            UserToken(user_id=worker.id, expires_in=60, expires_at=now + timedelta(days=1)),
        ]
    )
    session.commit()

    assert removeExpiredTokens(session, now) == 2
    assert session.query(UserToken).count() == 1
