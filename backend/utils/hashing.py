# backend/utils/hashing.py
import bcrypt

BCRYPT_ROUNDS = 10

# bcrypt only looks at the first 72 bytes of the secret
def _to_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:72]

def get_password_hash(password: str) -> str:
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(_to_bytes(password), salt).decode("utf-8")

def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(_to_bytes(plain_password), hashed_password.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database
        return False
