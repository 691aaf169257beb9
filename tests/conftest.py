import sys
from pathlib import Path

import pytest
from cryptography.fernet import Fernet


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from utils.storage import EncryptedCredentialStore


@pytest.fixture
def store(tmp_path: Path) -> EncryptedCredentialStore:
    return EncryptedCredentialStore(
        credential_file=str(tmp_path / "creds" / "credentials.enc"),
        key_file=str(tmp_path / "creds" / "credentials.key"),
        key="",
    )


@pytest.fixture
def keyed_store(tmp_path: Path) -> EncryptedCredentialStore:
    return EncryptedCredentialStore(
        credential_file=str(tmp_path / "keyed" / "credentials.enc"),
        key=Fernet.generate_key().decode("ascii"),
    )
