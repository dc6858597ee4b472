# SubVault: Configuration
#
# Settings come from environment variables (optionally a .env file).
# Every value has a local-first default so the vault works out of the box.

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

ENV_PREFIX = "SUBVAULT_"


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the vault and its HTTP boundary."""

    data_dir: Path = Path("./data")
    vault_file: Path = Path("./data/vault.json")
    audit_dir: Path = Path("./audit_logs")
    host: str = "127.0.0.1"
    port: int = 8000
    max_unlock_backoff: int = 16  # seconds


def _env(environ: Mapping[str, str], name: str) -> Optional[str]:
    value = environ.get(ENV_PREFIX + name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    dotenv_path: Optional[Path] = None,
) -> Settings:
    """
    Build Settings from the environment.

    Args:
        environ: Mapping to read from (default: os.environ after loading .env)
        dotenv_path: Explicit .env file (default: search from the CWD)

    Raises:
        ValueError: If a numeric setting is not an integer
    """
    if environ is None:
        load_dotenv(dotenv_path=dotenv_path, override=False)
        environ = os.environ

    data_dir = Path(_env(environ, "DATA_DIR") or "./data")
    vault_file = _env(environ, "VAULT_FILE")
    port = _env(environ, "PORT")
    backoff = _env(environ, "MAX_UNLOCK_BACKOFF")

    try:
        return Settings(
            data_dir=data_dir,
            vault_file=Path(vault_file) if vault_file else data_dir / "vault.json",
            audit_dir=Path(_env(environ, "AUDIT_DIR") or "./audit_logs"),
            host=_env(environ, "HOST") or "127.0.0.1",
            port=int(port) if port else 8000,
            max_unlock_backoff=int(backoff) if backoff else 16,
        )
    except ValueError as e:
        raise ValueError(f"Invalid SubVault setting: {e}") from e
