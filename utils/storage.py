"""
Encrypted credential storage

Credentials are kept as one Fernet-encrypted JSON document. Writes replace
the whole file atomically, so each field group is either fully visible or not
at all.
"""
import json
import logging
import os
import platform
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from cryptography.fernet import Fernet, InvalidToken

from settings import CREDENTIAL_FILE, CREDENTIAL_KEY, CREDENTIAL_KEY_FILE

logger = logging.getLogger(__name__)

TOKEN_GROUP = ("refresh_token", "access_token_expiry")
SESSION_GROUP = ("session_id", "character_id", "display_name")
STORED_FIELDS = TOKEN_GROUP + SESSION_GROUP


class StoreUnavailableError(Exception):
    """The encryption backend or the credential file cannot be used right now"""


def _restrict_permissions(path: Path, mode: int) -> None:
    if platform.system() != "Windows":
        os.chmod(path, mode)


class EncryptedCredentialStore:
    """Fernet-encrypted credential file with field-group writes"""

    def __init__(
        self,
        credential_file: Optional[str] = None,
        key_file: Optional[str] = None,
        key: Optional[str] = None,
    ):
        self.credential_path = Path(credential_file if credential_file else CREDENTIAL_FILE)
        self.key_path = Path(key_file if key_file else CREDENTIAL_KEY_FILE)
        self._configured_key = key if key is not None else CREDENTIAL_KEY
        self._fernet: Optional[Fernet] = None
        self._lock = threading.RLock()

    def _ensure_secure_directory(self, directory: Path) -> None:
        """Create the storage directory with owner-only permissions"""
        if not directory.exists():
            directory.mkdir(parents=True, exist_ok=True)
            _restrict_permissions(directory, 0o700)

    def _load_key(self) -> bytes:
        if self._configured_key:
            return self._configured_key.encode("ascii")

        if self.key_path.exists():
            return self.key_path.read_bytes().strip()

        self._ensure_secure_directory(self.key_path.parent)
        key = Fernet.generate_key()
        try:
            fd = os.open(self.key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except FileExistsError:
            # Another process created it first
            return self.key_path.read_bytes().strip()
        with os.fdopen(fd, "wb") as handle:
            handle.write(key)
        logger.info(f"Created credential key at {self.key_path}")
        return key

    def _backend(self) -> Fernet:
        """Return the cipher, creating it on first use"""
        with self._lock:
            if self._fernet is None:
                try:
                    self._fernet = Fernet(self._load_key())
                except (OSError, ValueError, UnicodeError) as e:
                    logger.error(f"Credential key unavailable: {type(e).__name__}")
                    raise StoreUnavailableError("Credential encryption key is unavailable") from e
            return self._fernet

    def is_available(self) -> bool:
        """Check whether the encryption backend can be used"""
        try:
            self._backend()
            return True
        except StoreUnavailableError:
            return False

    def read(self) -> Dict[str, Any]:
        """
        Load every stored field.

        Returns:
            Stored fields; empty when nothing has been stored

        Raises:
            StoreUnavailableError: If the key or the file cannot be used
        """
        with self._lock:
            fernet = self._backend()
            if not self.credential_path.exists():
                return {}
            try:
                token = self.credential_path.read_bytes()
                if not token:
                    return {}
                plaintext = fernet.decrypt(token)
                data = json.loads(plaintext.decode("utf-8"))
            except InvalidToken as e:
                logger.error("Stored credentials cannot be decrypted with the current key")
                raise StoreUnavailableError("Stored credentials cannot be decrypted") from e
            except (OSError, ValueError) as e:
                logger.error(f"Failed to read stored credentials: {type(e).__name__}")
                raise StoreUnavailableError("Stored credentials cannot be read") from e

            if not isinstance(data, dict):
                raise StoreUnavailableError("Stored credentials are malformed")
            return {key: value for key, value in data.items() if key in STORED_FIELDS}

    def get(self, name: str) -> Any:
        """Single field, or None when it is not stored"""
        return self.read().get(name)

    def write_group(self, values: Dict[str, Any], remove: Iterable[str] = ()) -> None:
        """
        Update a group of fields in one atomic replace.

        Args:
            values: Fields to set
            remove: Fields to delete in the same write

        Raises:
            StoreUnavailableError: If the backend or the file cannot be used
        """
        unknown = set(values) - set(STORED_FIELDS)
        if unknown:
            raise ValueError(f"Unknown credential fields: {sorted(unknown)}")

        with self._lock:
            data = self.read()
            for name in remove:
                data.pop(name, None)
            data.update(values)
            self._write(data)

    def _write(self, data: Dict[str, Any]) -> None:
        fernet = self._backend()
        token = fernet.encrypt(json.dumps(data).encode("utf-8"))
        directory = self.credential_path.parent
        tmp_name = None
        try:
            self._ensure_secure_directory(directory)
            fd, tmp_name = tempfile.mkstemp(prefix=".credentials-", dir=str(directory))
            with os.fdopen(fd, "wb") as handle:
                handle.write(token)
                handle.flush()
                os.fsync(handle.fileno())
            _restrict_permissions(Path(tmp_name), 0o600)
            os.replace(tmp_name, self.credential_path)
            tmp_name = None
        except OSError as e:
            logger.error(f"Failed to write stored credentials: {type(e).__name__}")
            raise StoreUnavailableError("Stored credentials cannot be written") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
        logger.debug(f"Saved credentials to {self.credential_path}")

    def clear(self) -> bool:
        """
        Delete stored credentials; does not need the encryption key.

        When the file cannot be removed it is emptied in place, which reads back
        as an empty store.

        Returns:
            False if the old contents are still on disk
        """
        with self._lock:
            if not self.credential_path.exists():
                return True
            try:
                self.credential_path.unlink()
                logger.debug(f"Removed {self.credential_path}")
                return True
            except OSError as e:
                logger.warning(f"Could not remove {self.credential_path}: {type(e).__name__}, emptying it instead")
            try:
                with open(self.credential_path, "wb"):
                    pass
                return True
            except OSError as e:
                logger.error(f"Failed to clear stored credentials: {type(e).__name__}")
                return False

    def get_status(self) -> Dict[str, Any]:
        """Describe what is stored without exposing secret values"""
        try:
            data = self.read()
        except StoreUnavailableError:
            return {"available": False, "has_credentials": False}

        return {
            "available": True,
            "has_credentials": bool(data.get("refresh_token") or data.get("session_id")),
            "has_refresh_token": bool(data.get("refresh_token")),
            "has_session": bool(data.get("session_id")),
            "character_id": data.get("character_id"),
            "display_name": data.get("display_name"),
            "access_token_expiry": data.get("access_token_expiry"),
        }

    @property
    def credential_file(self) -> Path:
        return self.credential_path
