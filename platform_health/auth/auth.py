from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError

from ..utils.log_common import build_logger

logger = build_logger("auth")


def hash_token(token: str) -> str:
    """
    Hash an admin token with Argon2 for ``PLATFORM_HEALTH_ADMIN_TOKEN_HASH``.

    :param token: The plain text token.
    :return: The encoded Argon2 hash.
    """
    if not token:
        raise ValueError("token must be a non-empty string")
    return PasswordHasher().hash(token)


def verify_token(token: str, token_hash: str) -> bool:
    """
    Verify a presented admin token against its Argon2 hash.

    :param token: The token sent by the caller.
    :param token_hash: The configured Argon2 hash.
    :return: True if the token matches, False otherwise (including a malformed hash).
    """
    if not token or not token_hash:
        return False
    try:
        return PasswordHasher().verify(token_hash, token)
    except VerificationError:
        return False
    except InvalidHash as e:
        logger.error(f"Configured admin token hash is invalid: {e}")
        return False
