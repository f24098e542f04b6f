"""Administrator password hashing (werkzeug's salted scrypt/pbkdf2 hashes)."""

from werkzeug.security import generate_password_hash


def hash_password(password: str) -> str:
    return generate_password_hash(password)
