"""Extensions used by the Flask application."""

from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_sqlalchemy import SQLAlchemy

from .utils.auth import extract_bearer_token, token_fingerprint


def _limiter_key_func() -> str:
    token = extract_bearer_token()
    if token:
        return f"token:{token_fingerprint(token)}"
    return get_remote_address()


db = SQLAlchemy()
cors = CORS()
limiter = Limiter(key_func=_limiter_key_func, default_limits=[])

__all__ = ["db", "cors", "limiter"]
