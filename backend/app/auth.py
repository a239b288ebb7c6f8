import logging
from typing import Optional

import jwt

from utils.errors import AuthError

logger = logging.getLogger(__name__)


class Principal:
    def __init__(self, user_id: str, authorization: str, verified: bool):
        self.user_id = user_id
        # Raw header value, forwarded to sources that need the caller's credential
        self.authorization = authorization
        self.verified = verified


class TokenVerifier:
    """Decodes bearer tokens.

    With a secret, tokens must carry a valid HS256 signature. Without one, the
    behaviour depends on ``allow_unverified``: when true the payload is decoded
    without checking the signature, which trusts whoever presents a well-formed
    token; when false every token is rejected.
    """

    def __init__(self, secret: Optional[str] = None, allow_unverified: bool = True):
        self.secret = secret
        self.allow_unverified = allow_unverified

    def authenticate(self, authorization: Optional[str]) -> Principal:
        if not authorization:
            raise AuthError("Missing authorization header")

        scheme, _, token = authorization.partition(" ")
        token = token.strip()
        if scheme.lower() != "bearer" or not token:
            raise AuthError("Invalid authorization header")

        claims = self._decode(token)
        user_id = claims.get("sub")
        if not user_id:
            raise AuthError("Token has no subject")
        return Principal(str(user_id), authorization, verified=self.secret is not None)

    def _decode(self, token):
        if self.secret:
            try:
                return jwt.decode(token, self.secret, algorithms=["HS256"], options={"verify_aud": False})
            except jwt.ExpiredSignatureError as e:
                raise AuthError("Token has expired") from e
            except jwt.InvalidTokenError as e:
                raise AuthError(f"Invalid token: {str(e)}") from e

        if not self.allow_unverified:
            raise AuthError("Token verification is not configured")

        try:
            return jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError as e:
            raise AuthError(f"Invalid token: {str(e)}") from e
