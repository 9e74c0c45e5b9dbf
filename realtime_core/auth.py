from typing import Optional

import jwt

from logging_config import get_logger
from realtime_core.errors import InvalidCredential, MissingCredential, UnknownUser
from realtime_core.ports import TokenVerifier, UserDirectory, UserIdentity

logger = get_logger(__name__)

# Claims checked in order for the user id
USER_ID_CLAIMS = ("id", "user_id", "sub")


def extract_bearer(value: Optional[str]) -> Optional[str]:
    """Strip an optional ``Bearer`` prefix; blank values count as missing."""
    if not value:
        return None
    token = value.strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()
    return token or None


class JWTTokenVerifier:
    def __init__(self, secret: str, algorithm: str = "HS256"):
        self.secret = secret
        self.algorithm = algorithm

    def verify(self, token: str) -> int:
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise InvalidCredential("Token has expired")
        except jwt.PyJWTError as e:
            logger.debug(f"JWT decode failed: {e}")
            raise InvalidCredential()

        for claim in USER_ID_CLAIMS:
            user_id = payload.get(claim)
            if user_id is not None:
                try:
                    return int(user_id)
                except (TypeError, ValueError):
                    raise InvalidCredential()
        raise InvalidCredential()


class AuthGate:
    """Turns a bearer credential into a verified user identity.

    Raises ``MissingCredential``, ``InvalidCredential`` or ``UnknownUser``;
    callers treat all three as a denied admission.
    """

    def __init__(self, verifier: TokenVerifier, directory: UserDirectory):
        self.verifier = verifier
        self.directory = directory

    async def authenticate(self, credential: Optional[str]) -> UserIdentity:
        token = extract_bearer(credential)
        if not token:
            raise MissingCredential()

        user_id = self.verifier.verify(token)
        user = await self.directory.find_by_id(user_id)
        if user is None:
            logger.warning(f"Valid token for unknown user {user_id}")
            raise UnknownUser()
        return user
