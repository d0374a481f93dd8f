"""
notionctl Configuration.
Loads per-profile credentials from the profile store, then applies
environment overrides.

Profile store layout (~/.config/notionctl/config.json):

    {"profiles": {"default": {"token": "...", "notion_version": "2025-09-03"}}}
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

from .errors import ErrorKind, NotionError

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = "default"
DEFAULT_NOTION_VERSION = "2025-09-03"
DEFAULT_BASE_URL = "https://api.notion.com/v1"
CONFIG_FILE = "config.json"

DIR_PERMISSIONS = 0o700
FILE_PERMISSIONS = 0o600


def default_config_dir() -> Path:
    override = os.environ.get("NOTIONCTL_CONFIG_DIR")
    if override:
        return Path(override)
    return Path.home() / ".config" / "notionctl"


class ProfileStore:
    """JSON persistence for profile tokens and API versions."""

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()
        self.path = self.config_dir / CONFIG_FILE
        self.data: Dict = {}
        self._load()

    def _load(self):
        if not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise NotionError(
                ErrorKind.VALIDATION, f"read config {self.path}: {e}"
            ) from e
        if not isinstance(data, dict):
            raise NotionError(
                ErrorKind.VALIDATION, f"config {self.path} must hold a JSON object"
            )
        self.data = data

    def save(self):
        self.config_dir.mkdir(mode=DIR_PERMISSIONS, parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_PERMISSIONS)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(self.data, f, indent=2)
        os.replace(tmp_path, self.path)
        os.chmod(self.path, FILE_PERMISSIONS)

    def _profile(self, profile: str, create: bool = False) -> Dict:
        if not profile:
            raise NotionError(ErrorKind.VALIDATION, "profile name cannot be empty")
        profiles = self.data.get("profiles")
        if not isinstance(profiles, dict):
            profiles = {}
            if create:
                self.data["profiles"] = profiles
        entry = profiles.get(profile)
        if not isinstance(entry, dict):
            entry = {}
            if create:
                profiles[profile] = entry
        return entry

    def save_token(self, profile: str, token: str, version: str = "") -> None:
        """Store the integration token (and API version) for a profile."""
        token = (token or "").strip()
        if not token:
            raise NotionError(ErrorKind.VALIDATION, "token cannot be empty")
        entry = self._profile(profile, create=True)
        entry["token"] = token
        entry["notion_version"] = version or DEFAULT_NOTION_VERSION
        self.save()

    def save_version(self, profile: str, version: str) -> None:
        entry = self._profile(profile, create=True)
        entry["notion_version"] = version or DEFAULT_NOTION_VERSION
        self.save()

    def load_version(self, profile: str) -> str:
        return self._profile(profile).get("notion_version") or DEFAULT_NOTION_VERSION

    def load_auth(self, profile: str) -> Tuple[str, str]:
        """Return (token, notion_version) for a profile."""
        entry = self._profile(profile)
        token = entry.get("token") or ""
        if not token:
            raise NotionError(
                ErrorKind.AUTH,
                f"no stored credentials for profile {profile!r}; run `notionctl auth login`",
            )
        return token, self.load_version(profile)


@dataclass
class NotionConfig:
    profile: str = DEFAULT_PROFILE
    token: str = ""
    notion_version: str = DEFAULT_NOTION_VERSION
    base_url: str = DEFAULT_BASE_URL
    max_retries: int = 5
    timeout_sec: float = 30.0
    debug: bool = False

    def __repr__(self):
        """Redact the token in logs and debug output."""
        d = self.__dict__.copy()
        if d.get("token"):
            d["token"] = "***REDACTED***"
        fields = ", ".join(f"{k}={v!r}" for k, v in d.items())
        return f"{self.__class__.__name__}({fields})"


def load_config(
    profile: str = DEFAULT_PROFILE, store: Optional[ProfileStore] = None
) -> NotionConfig:
    """
    Build the client configuration for a profile.

    NOTIONCTL_TOKEN and NOTIONCTL_NOTION_VERSION take precedence over the
    profile store, so CI can run without a stored login.
    """
    cfg = NotionConfig(profile=profile or DEFAULT_PROFILE)

    cfg.debug = os.environ.get("NOTIONCTL_DEBUG", "0") == "1"
    cfg.base_url = os.environ.get("NOTIONCTL_BASE_URL", DEFAULT_BASE_URL).rstrip("/")
    if retries := os.environ.get("NOTIONCTL_MAX_RETRIES"):
        if retries.isdigit():
            cfg.max_retries = int(retries)
    if timeout := os.environ.get("NOTIONCTL_TIMEOUT_SEC"):
        try:
            cfg.timeout_sec = float(timeout)
        except ValueError:
            logger.warning(f"Ignoring invalid NOTIONCTL_TIMEOUT_SEC={timeout!r}")

    env_token = os.environ.get("NOTIONCTL_TOKEN", "").strip()
    env_version = os.environ.get("NOTIONCTL_NOTION_VERSION", "").strip()

    if env_token:
        cfg.token = env_token
        cfg.notion_version = env_version or DEFAULT_NOTION_VERSION
        return cfg

    store = store or ProfileStore()
    cfg.token, cfg.notion_version = store.load_auth(cfg.profile)
    if env_version:
        cfg.notion_version = env_version
    return cfg
