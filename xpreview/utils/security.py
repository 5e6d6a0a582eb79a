from datetime import datetime, timedelta
from typing import Optional
from jose import jwt, JWTError
from config.config import Config
from xpreview.utils.logger import get_logger

logger = get_logger(__name__)

ALGORITHM = "HS256"


def generate_token(user_id: int, role: str, expires_delta: timedelta = None) -> str:
    """Issue a signed access token carrying the user's id and role"""
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=Config.ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {'sub': str(user_id), 'user_id': user_id, 'role': role, 'exp': expire}
    return jwt.encode(claims, Config.SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[dict]:
    """Decode an access token; None when it is invalid or expired"""
    try:
        payload = jwt.decode(token, Config.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.debug(f"Rejected access token: {str(e)}")
        return None

    if 'user_id' not in payload or 'role' not in payload:
        return None
    return payload
