"""
Settings persistence for dejacmd.

The settings record lives in <config_dir>/settings.yaml and the encryption
key for stored passwords in <config_dir>/dejacmd.key (owner read/write
only). Keeping the key out of the settings file means a copied or shared
settings file does not carry what is needed to decrypt its passwords.

<config_dir> is, in order of preference:
    - $DEJACMD_CONFIG_DIR
    - %APPDATA%\\dejacmd on Windows
    - $XDG_CONFIG_HOME/dejacmd
    - ~/.config/dejacmd

Design Principles:
    - Settings values are immutable; every setter returns a new value and
      persists it through save()
    - save() takes an advisory lock with a short, bounded retry and
      replaces the file atomically
    - A missing key is only recoverable when writing a password
"""

import logging
import os
import tempfile
import time
from pathlib import Path

import yaml
from filelock import FileLock, Timeout
from pydantic import ValidationError

from dejacmd import crypt
from dejacmd.errors import (
    DejacmdError,
    KeyFileError,
    MissingKeyError,
    SettingsLockError,
    SettingsReadError,
    SettingsWriteError,
)
from dejacmd.schema import PROGRAM, Settings, TargetName, home_dir
from dejacmd.store.connection import expand_tilde, url_scheme

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "DEJACMD_CONFIG_DIR"
SETTINGS_FILENAME = "settings.yaml"
KEY_FILENAME = f"{PROGRAM}.key"

LOCK_ATTEMPTS = 3
LOCK_BACKOFF_SECONDS = 0.5


def default_config_dir() -> Path:
    """Directory holding the settings and key files."""
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    if os.name == "nt" and os.environ.get("APPDATA"):
        return Path(os.environ["APPDATA"]) / PROGRAM
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / PROGRAM
    return home_dir() / ".config" / PROGRAM


def _blank_to_none(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value


class SettingsStore:
    """
    Reads and writes the settings and key files.

    Usage:
        store = SettingsStore()
        settings = store.load_or_default()
        settings = store.set_password(settings, TargetName.CENTRAL, "secret")
        user, password = store.get_credentials(settings, TargetName.CENTRAL)
    """

    def __init__(
        self,
        config_dir: Path | str | None = None,
        lock_attempts: int = LOCK_ATTEMPTS,
        lock_backoff: float = LOCK_BACKOFF_SECONDS,
    ) -> None:
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()
        self.lock_attempts = lock_attempts
        self.lock_backoff = lock_backoff

    @property
    def settings_path(self) -> Path:
        return self.config_dir / SETTINGS_FILENAME

    @property
    def key_path(self) -> Path:
        return self.config_dir / KEY_FILENAME

    @property
    def lock_path(self) -> Path:
        return self.config_dir / f"{SETTINGS_FILENAME}.lock"

    def _ensure_dir(self) -> None:
        self.config_dir.mkdir(mode=0o700, parents=True, exist_ok=True)

    # =========================================================================
    # Settings File
    # =========================================================================

    def load(self) -> Settings:
        """
        Load and validate the settings file.

        A missing file is created with default settings.

        Raises:
            SettingsReadError: If the file cannot be read or is invalid
            SettingsWriteError: If the default file cannot be created
        """
        path = self.settings_path
        if not path.exists():
            settings = Settings()
            self.save(settings)
            logger.info("Created default settings at %s", path)
            return settings

        try:
            with path.open(encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise SettingsReadError(path=str(path), underlying_error=str(e)) from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise SettingsReadError(
                path=str(path),
                underlying_error=f"expected a mapping, got {type(data).__name__}",
            )
        try:
            return Settings.model_validate(data)
        except ValidationError as e:
            raise SettingsReadError(path=str(path), underlying_error=str(e)) from e

    def load_or_default(self) -> Settings:
        """load(), falling back to in-memory defaults on any settings error."""
        try:
            return self.load()
        except DejacmdError as e:
            logger.warning(
                "Error loading settings file %s [%s] - using default settings with SQLite database",
                self.settings_path,
                e.message,
            )
            return Settings()

    def _acquire(self, lock: FileLock) -> None:
        for attempt in range(1, self.lock_attempts + 1):
            try:
                lock.acquire(timeout=0)
                return
            except Timeout:
                if attempt == self.lock_attempts:
                    break
                time.sleep(self.lock_backoff)
        raise SettingsLockError(path=str(self.settings_path), attempts=self.lock_attempts)

    def save(self, settings: Settings) -> Path:
        """
        Write settings to disk under the advisory lock.

        Returns:
            Path of the settings file

        Raises:
            SettingsLockError: If the lock is still held after all attempts
            SettingsWriteError: If the file cannot be written
        """
        path = self.settings_path
        try:
            self._ensure_dir()
        except OSError as e:
            raise SettingsWriteError(path=str(path), underlying_error=str(e)) from e

        lock = FileLock(str(self.lock_path))
        self._acquire(lock)
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=".settings-", suffix=".yaml", dir=self.config_dir)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    yaml.safe_dump(settings.to_document(), f, sort_keys=False)
                os.replace(tmp_name, path)
            except OSError:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise SettingsWriteError(path=str(path), underlying_error=str(e)) from e
        finally:
            lock.release()
        logger.debug("Wrote settings to %s", path)
        return path

    # =========================================================================
    # Key File
    # =========================================================================

    def load_key(self) -> str | None:
        """
        Read the encryption key, None if the key file does not exist.

        Raises:
            KeyFileError: If the key file exists but cannot be read
        """
        try:
            text = self.key_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise KeyFileError(path=str(self.key_path), underlying_error=str(e)) from e
        return text or None

    def load_or_create_key(self) -> str:
        """
        Read the key, generating and storing a new one if absent.

        Raises:
            KeyFileError: If the key file cannot be read or created
        """
        key = self.load_key()
        if key is not None:
            return key

        key = crypt.generate_key()
        try:
            self._ensure_dir()
            fd = os.open(self.key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(key)
            os.chmod(self.key_path, 0o600)
        except OSError as e:
            raise KeyFileError(path=str(self.key_path), underlying_error=str(e)) from e
        logger.info("Generated new encryption key at %s", self.key_path)
        return key

    # =========================================================================
    # Credentials
    # =========================================================================

    def get_credentials(self, settings: Settings, target: TargetName) -> tuple[str, str]:
        """
        User and decrypted password for a target.

        Raises:
            MissingKeyError: If a password is stored but there is no key file
            CryptoError: If the stored password cannot be decrypted
        """
        user = settings.user(target)
        stored = settings.encrypted_password(target)
        if not stored.strip():
            return user, ""
        try:
            password = crypt.decrypt_hex(stored, self.load_key())
        except MissingKeyError as e:
            raise MissingKeyError(key_path=str(self.key_path)) from e
        return user, password

    def set_database_url(self, settings: Settings, target: TargetName, url: str) -> Settings:
        """Set a target's URL; a blank central URL unconfigures it."""
        url = url.strip()
        if url and url_scheme(url).startswith("sqlite") and "~" in url:
            url = expand_tilde(url)
        if target == TargetName.LOCAL:
            updated = settings.model_copy(update={"local_database_url": url})
        else:
            updated = settings.model_copy(update={"central_database_url": _blank_to_none(url)})
        self.save(updated)
        return updated

    def set_user(self, settings: Settings, target: TargetName, user: str) -> Settings:
        updated = settings.model_copy(update={f"{target.value}_user": _blank_to_none(user)})
        self.save(updated)
        return updated

    def _encrypted(self, password: str) -> str | None:
        if not password.strip():
            return None
        return crypt.encrypt_to_hex(password, self.load_or_create_key())

    def set_password(self, settings: Settings, target: TargetName, password: str) -> Settings:
        """Encrypt and store a password; a blank password clears it."""
        updated = settings.model_copy(
            update={f"{target.value}_encrypted_password": self._encrypted(password)}
        )
        self.save(updated)
        return updated

    def set_user_password(
        self,
        settings: Settings,
        target: TargetName,
        user: str,
        password: str,
    ) -> Settings:
        updated = settings.model_copy(
            update={
                f"{target.value}_user": _blank_to_none(user),
                f"{target.value}_encrypted_password": self._encrypted(password),
            }
        )
        self.save(updated)
        return updated
