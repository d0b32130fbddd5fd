#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Institutional credential management for the discipline catalog sync engine.

Credentials are read once at process start, from the UERJ_MATRICULA and
UERJ_SENHA environment variables or, when those are unset, from a local
credentials file kept with owner-only permissions. The result is an immutable
CredentialConfig that is passed explicitly to the session authenticator.
"""

import os
import json
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .logger import setup_logging

logger = setup_logging()

# Local credentials file path
LOCAL_CREDENTIALS_FILE = Path(__file__).parent.parent / 'data' / 'local_credentials.json'


@dataclass(frozen=True)
class CredentialConfig:
    """Login credentials for Aluno Online. The password never shows up in repr()."""

    matricula: str
    senha: str = field(repr=False)

    def __post_init__(self):
        if not self.matricula or not self.senha:
            raise ValueError("Both matricula and senha are required")


def load_credentials(credentials_file: Path = LOCAL_CREDENTIALS_FILE) -> CredentialConfig:
    """
    Load credentials from the environment, falling back to the local file.

    Returns:
        CredentialConfig: The institutional credentials

    Raises:
        RuntimeError: If no credentials are configured anywhere
    """
    matricula = os.getenv('UERJ_MATRICULA', '').strip()
    senha = os.getenv('UERJ_SENHA', '')

    if matricula and senha:
        return CredentialConfig(matricula=matricula, senha=senha)

    local = load_local_credentials(credentials_file)
    if local is not None:
        logger.info("Using credentials from local credentials file")
        return local

    raise RuntimeError(
        "No portal credentials configured: set UERJ_MATRICULA and UERJ_SENHA "
        "or save a local credentials file"
    )


def load_local_credentials(credentials_file: Path = LOCAL_CREDENTIALS_FILE) -> Optional[CredentialConfig]:
    """
    Load credentials from the local credentials file.

    Returns:
        CredentialConfig or None if not found/invalid
    """
    if not credentials_file.exists():
        return None

    if not check_file_permissions(credentials_file):
        logger.warning("Credentials file is readable by other users; run save-credentials again to fix it")

    try:
        with open(credentials_file, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        # Never expose file contents here
        logger.error(f"Error loading local credentials: {type(e).__name__}")
        return None

    if not data.get('matricula') or not data.get('senha'):
        return None

    return CredentialConfig(matricula=str(data['matricula']), senha=str(data['senha']))


def save_local_credentials(credentials: CredentialConfig,
                           credentials_file: Path = LOCAL_CREDENTIALS_FILE) -> Path:
    """
    Save credentials to the local file and restrict it to the current user.

    Args:
        credentials: Credentials to store
        credentials_file: Destination path

    Returns:
        Path: The written file
    """
    credentials_file.parent.mkdir(parents=True, exist_ok=True)

    data = {
        'matricula': credentials.matricula,
        'senha': credentials.senha,
    }

    with open(credentials_file, 'w', encoding='utf-8') as f:
        json.dump(data, f, ensure_ascii=False, indent=2)

    harden_file_permissions(credentials_file)
    logger.info(f"Saved local credentials to {credentials_file}")
    return credentials_file


def harden_file_permissions(file_path: Path):
    """Restrict the file to owner read/write (0o600)."""
    try:
        os.chmod(file_path, stat.S_IRUSR | stat.S_IWUSR)
    except OSError:
        logger.warning("Could not harden file permissions for credentials file")


def check_file_permissions(file_path: Path) -> bool:
    """
    Check that group and others have no access to the credentials file.

    Returns:
        bool: True if permissions are acceptable, False otherwise
    """
    if os.name == 'nt':
        return True

    try:
        mode = os.stat(file_path).st_mode
    except OSError:
        return False
    return (mode & (stat.S_IRWXG | stat.S_IRWXO)) == 0
