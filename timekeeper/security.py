from __future__ import annotations

import base64

from cryptography.fernet import Fernet, InvalidToken

from timekeeper.config import settings


class IntegrationSecretDecryptError(RuntimeError):
  pass


def _fernet() -> Fernet:
  key = settings.fernet_key
  # accept raw bytes/base64 for ergonomics
  try:
    base64.urlsafe_b64decode(key.encode("utf-8"))
    return Fernet(key.encode("utf-8"))
  except Exception:
    b = base64.urlsafe_b64encode(key.encode("utf-8").ljust(32, b"\0")[:32])
    return Fernet(b)


def encrypt_secret(value: str) -> str:
  return _fernet().encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_secret(value: str) -> str:
  return _fernet().decrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_integration_secret(value: str) -> str:
  try:
    return decrypt_secret(value)
  except InvalidToken as exc:
    raise IntegrationSecretDecryptError(
      "Integration credential cannot be decrypted with the current key; reconfigure this integration."
    ) from exc


def token_hint(value: str) -> str:
  s = (value or "").strip()
  if not s:
    return ""
  if len(s) <= 6:
    return f"…{s}"
  return f"…{s[-6:]}"
