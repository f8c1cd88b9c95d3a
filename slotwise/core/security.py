from passlib.context import CryptContext
from cryptography.fernet import Fernet, InvalidToken
from datetime import datetime, timedelta, timezone
from jose import jwt, JWTError
import secrets

from slotwise.core.config import settings

SECRET_KEY = settings.JWT_SECRET_KEY
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24

#Bytes of randomness behind verification and visitor-access tokens
CAPABILITY_TOKEN_BYTES = 32

pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
)

def hash_password(password: str) -> str:
    return pwd_context.hash(password)

def verify_password(password: str, hashed_password: str) -> bool:
    return pwd_context.verify(password, hashed_password)

def create_access_token(data: dict) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=ACCESS_TOKEN_EXPIRE_MINUTES
    )
    to_encode.update({"exp": expire})

    return jwt.encode(
        to_encode,
        SECRET_KEY,
        algorithm=ALGORITHM,
    )

def decode_access_token(token: str) -> dict | None:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None

#Hex-encoded random secret used for visitor-facing capability links
def generate_token() -> str:
    return secrets.token_hex(CAPABILITY_TOKEN_BYTES)


#Stored calendar credentials are encrypted at rest with Fernet
def _fernet() -> Fernet:
    if not settings.CALENDAR_TOKEN_KEY:
        raise RuntimeError("CALENDAR_TOKEN_KEY is not set")
    return Fernet(settings.CALENDAR_TOKEN_KEY.encode())

def encrypt_secret(value: str) -> str:
    return _fernet().encrypt(value.encode()).decode()

def decrypt_secret(value: str) -> str | None:
    try:
        return _fernet().decrypt(value.encode()).decode()
    except InvalidToken:
        return None
