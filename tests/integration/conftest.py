from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from apps.api.app.main import app
from apps.api.app.api.deps import get_clock
from apps.api.app.core.security import get_password_hash
from apps.api.app.models.user import User


USERS = {
    "free@test.com": ("FreePass123!", "free"),
    "pro@test.com": ("ProPass123!", "pro"),
    "other@test.com": ("OtherPass123!", "starter"),
}


@pytest.fixture()
def client(db, clock):
    for email, (password, plan) in USERS.items():
        db.add(
            User(
                email=email,
                hashed_password=get_password_hash(password),
                plan=plan,
                created_at=clock.now - timedelta(days=1),
            )
        )
    db.commit()

    app.dependency_overrides[get_clock] = lambda: clock
    try:
        with TestClient(app) as tc:
            yield tc
    finally:
        app.dependency_overrides.pop(get_clock, None)
