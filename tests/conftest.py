import os

# Keep app import from picking up a developer's secret
os.environ.setdefault("JWT_SECRET", "test-secret")

import jwt
import pytest

from fakes import InMemoryStore
from realtime_core.auth import JWTTokenVerifier
from realtime_core.hub import ChatHub

SECRET = "test-secret"


def make_token(user_id, secret: str = SECRET, **claims) -> str:
    return jwt.encode({"id": user_id, **claims}, secret, algorithm="HS256")


@pytest.fixture
def store():
    """Users 1..3; conversation 7 is between users 1 and 2."""
    store = InMemoryStore()
    store.add_user(1, "Alice")
    store.add_user(2, "Bob")
    store.add_user(3, "Carol")
    store.add_conversation(7, 1, 2)
    store.add_conversation(8, 1, 3)
    return store


@pytest.fixture
def verifier():
    return JWTTokenVerifier(SECRET)


@pytest.fixture
def hub(store, verifier):
    return ChatHub(store, store, verifier)


@pytest.fixture
def token():
    return make_token
