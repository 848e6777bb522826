# tonescrow/services/secret_store.py
"""
Шифрование секретов (мнемоники кастодиального кошелька) ключом из парольной фразы.

Формат blob: base64(salt[16] | iv[12] | ciphertext+tag).
Ключ: PBKDF2-HMAC-SHA256, 100 000 итераций, 32 байта (AES-256-GCM).
Соль и IV случайные для каждого шифрования.
"""
import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from tonescrow.core.exceptions import DecryptionError, ConfigurationMissing

SALT_SIZE = 16
IV_SIZE = 12
KEY_SIZE = 32
PBKDF2_ITERATIONS = 100_000


def _derive_key(passphrase: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def encrypt(plaintext: str, passphrase: str) -> str:
    if not passphrase:
        raise ConfigurationMissing("Encryption passphrase is not configured.")
    salt = os.urandom(SALT_SIZE)
    iv = os.urandom(IV_SIZE)
    ciphertext = AESGCM(_derive_key(passphrase, salt)).encrypt(iv, plaintext.encode("utf-8"), None)
    return base64.b64encode(salt + iv + ciphertext).decode("ascii")


def decrypt(blob: str, passphrase: str) -> str:
    """
    Расшифровывает blob. Неверная парольная фраза или поврежденные данные
    всегда дают DecryptionError: GCM-тег не сойдется, мусор наружу не попадет.
    """
    if not passphrase:
        raise ConfigurationMissing("Encryption passphrase is not configured.")
    try:
        raw = base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError):
        raise DecryptionError("Encrypted secret is malformed")

    # 16 байт тега GCM минимум
    if len(raw) < SALT_SIZE + IV_SIZE + 16:
        raise DecryptionError("Encrypted secret is too short")

    salt, iv, ciphertext = raw[:SALT_SIZE], raw[SALT_SIZE:SALT_SIZE + IV_SIZE], raw[SALT_SIZE + IV_SIZE:]
    try:
        plaintext = AESGCM(_derive_key(passphrase, salt)).decrypt(iv, ciphertext, None)
    except InvalidTag:
        raise DecryptionError("Failed to decrypt secret: wrong passphrase or corrupted data")
    return plaintext.decode("utf-8")
