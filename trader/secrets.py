"""Secrets management: load Bitget API credentials from environment or config file.

Priority order:
1. Environment variables: BITGET_API_KEY, BITGET_API_SECRET, BITGET_PASSPHRASE
2. Config file: ~/.bitget_config.json or custom path via ENV BITGET_CONFIG_PATH
"""
import json
import os
from pathlib import Path
from typing import NamedTuple, Optional

ENV_KEYS = ("BITGET_API_KEY", "BITGET_API_SECRET", "BITGET_PASSPHRASE")


class BitgetCredentials(NamedTuple):
    api_key: str
    api_secret: str
    passphrase: str

    def __repr__(self) -> str:
        return f"BitgetCredentials(api_key={self.api_key[:4]}***)"


def load_credentials(
    config_path: Optional[str] = None,
) -> BitgetCredentials:
    """Load Bitget credentials from env or config file.

    Args:
        config_path: Optional override path to config file. If not provided,
                     checks BITGET_CONFIG_PATH env var, then ~/.bitget_config.json

    Returns:
        BitgetCredentials with api_key, api_secret, passphrase

    Raises:
        ValueError: If credentials are not found or incomplete
    """
    api_key, api_secret, passphrase = (os.getenv(k) for k in ENV_KEYS)

    if api_key and api_secret and passphrase:
        return BitgetCredentials(api_key=api_key, api_secret=api_secret, passphrase=passphrase)

    if config_path is None:
        config_path = os.getenv("BITGET_CONFIG_PATH")
    if config_path is None:
        config_path = str(Path.home() / ".bitget_config.json")

    config_file = Path(config_path)
    if config_file.exists():
        try:
            with config_file.open("r") as f:
                cfg = json.load(f)
        except (OSError, ValueError) as e:
            raise ValueError(f"Failed to load config from {config_path}: {e}")
        api_key = api_key or cfg.get("api_key")
        api_secret = api_secret or cfg.get("api_secret")
        passphrase = passphrase or cfg.get("passphrase")

    if not api_key or not api_secret or not passphrase:
        raise ValueError(
            "Missing Bitget credentials. Provide via:\n"
            "  - Environment: BITGET_API_KEY, BITGET_API_SECRET, BITGET_PASSPHRASE\n"
            f"  - Config file: {config_path}\n"
            "  - BITGET_CONFIG_PATH env var to override config location"
        )

    return BitgetCredentials(api_key=api_key, api_secret=api_secret, passphrase=passphrase)


def save_config(
    config_path: str,
    api_key: str,
    api_secret: str,
    passphrase: str,
) -> None:
    """Save credentials to a config file for later use.

    WARNING: Stores secrets in plaintext. The file is chmod 600 where supported.
    """
    config = {
        "api_key": api_key,
        "api_secret": api_secret,
        "passphrase": passphrase,
    }
    cfg_file = Path(config_path)
    cfg_file.parent.mkdir(parents=True, exist_ok=True)

    with cfg_file.open("w") as f:
        json.dump(config, f, indent=2)

    try:
        cfg_file.chmod(0o600)
    except OSError:
        pass  # no chmod on Windows
