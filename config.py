"""
config.py – Application configuration and constants.

This module defines AppConfig, a central container for:
  - All application-wide constants (KDF parameters, store keys, PIN policy).
  - The user configuration (PIN length, salt mode, export widths, …) stored
    as a JSON file on disk and exposed through a simple dict-like interface.
  - Helper utilities shared across modules: OS-appropriate data-directory
    resolution and logger setup.

No other application module is imported here, so config.py sits at the bottom
of the dependency graph and can be safely imported by any other module.
"""

import json
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

import appdirs

# ---------------------------------------------------------------------------
# Application-level constants – these never change at runtime.
# ---------------------------------------------------------------------------

APP_NAME = "PasswordSaver"

# Human-readable application version shown by the CLI.
APP_VERSION = "1.0.0"

# Key derivation parameters.  The salt is a fixed constant shared by every
# installation; previously persisted ciphertext depends on it, so it must not
# change unless the "use_random_salt" option is chosen at PIN setup.
KDF_SALT = b"PasswordSaver"
KDF_ITERATIONS = 1000
KDF_KEY_LENGTH = 32

# Length of the optional per-installation random salt.
RANDOM_SALT_LENGTH = 16

# Keys used in the key-value store.
PIN_HASH_KEY = "pinHash"
BIOMETRICS_KEY = "useBiometrics"
RECORDS_KEY = "passwords"
SALT_KEY = "kdfSalt"

# Minimum number of characters in a generated password.
MIN_LENGTH = 12

# ---------------------------------------------------------------------------
# Default values written to config.json on first run.
# ---------------------------------------------------------------------------
DEFAULT_CONFIG: dict = {
    # Shortest PIN accepted by setup_pin().
    "min_pin_length": 4,
    # Derive keys with a random per-installation salt instead of KDF_SALT.
    "use_random_salt": False,
    # Drop the session key as soon as the app is backgrounded.
    "lock_on_background": True,
    # Default length for generated passwords.
    "generated_password_length": MIN_LENGTH,
    # Column widths (in characters) for the exported Excel file.
    "excel_column_widths": {"A": 20, "B": 20, "C": 25, "D": 25, "E": 20},
}


class AppConfig:
    """
    Manages application configuration, file paths and logging.

    On instantiation the class:
      1. Resolves the user-data directory (or uses *data_dir* if given).
      2. Derives all relevant file paths from that directory.
      3. Sets up a rotating log handler.
      4. Loads (or creates) the JSON configuration file.

    Parameters
    ----------
    data_dir : str, optional
        Directory for every persistent file.  Defaults to the OS-standard
        user-data directory; tests pass a temporary directory.

    Attributes
    ----------
    user_data_dir : str
        Absolute path of the directory that stores all persistent data.
    store_dir : str
        Directory holding one file per key-value store entry.
    config_path : str
        JSON configuration file.
    log_path : str
        Rotating application log.
    data : dict
        The currently loaded configuration values (mutable at runtime).
    logger : logging.Logger
        Shared Python logger for the whole application.
    """

    def __init__(self, data_dir: Optional[str] = None) -> None:
        # --- Resolve (and create) the persistent data directory ---
        self.user_data_dir: str = data_dir or self._get_user_data_dir()
        os.makedirs(self.user_data_dir, exist_ok=True)

        # --- Derive all file paths from the data directory ---
        self.store_dir:   str = os.path.join(self.user_data_dir, "store")
        self.config_path: str = os.path.join(self.user_data_dir, "config.json")
        self.log_path:    str = os.path.join(self.user_data_dir, "app.log")

        # --- Configure the rotating log handler ---
        self.logger: logging.Logger = self._setup_logger()

        # --- Load or create the JSON configuration ---
        self.data: dict = self._load()

        self.logger.info("AppConfig initialised; data dir: %s", self.user_data_dir)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _get_user_data_dir() -> str:
        """Return the OS-appropriate user-data directory (not created here)."""
        return appdirs.user_data_dir(APP_NAME)

    def _setup_logger(self) -> logging.Logger:
        """
        Create and configure a rotating file logger for the whole application.

        The log rotates at 2 MB and keeps up to 3 backup files.  A handler
        already pointing at this log file is not added twice (e.g. when
        several AppConfig objects share one data directory).
        """
        logger = logging.getLogger(APP_NAME)
        logger.setLevel(logging.DEBUG)

        target = os.path.abspath(self.log_path)
        for existing in logger.handlers:
            if getattr(existing, "baseFilename", None) == target:
                return logger

        handler = RotatingFileHandler(
            self.log_path,
            maxBytes=2_000_000,
            backupCount=3,
            encoding="utf-8",
        )
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s: %(message)s")
        )
        logger.addHandler(handler)
        return logger

    def _load(self) -> dict:
        """
        Read config.json from disk.

        Missing keys are back-filled from DEFAULT_CONFIG so that new
        settings introduced in later versions are always present.
        A corrupt file is logged and replaced by the defaults in memory.
        """
        try:
            if os.path.exists(self.config_path):
                with open(self.config_path, "r", encoding="utf-8") as fh:
                    cfg: dict = json.load(fh)
                for key, value in DEFAULT_CONFIG.items():
                    cfg.setdefault(key, value)
                return cfg
        except (OSError, ValueError):
            self.logger.exception("Failed to load config; using defaults")

        return json.loads(json.dumps(DEFAULT_CONFIG))

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def save(self) -> None:
        """Persist the current configuration dictionary to disk as JSON."""
        try:
            with open(self.config_path, "w", encoding="utf-8") as fh:
                json.dump(self.data, fh, indent=2)
            self.logger.info("Config saved")
        except OSError:
            self.logger.exception("Failed to save config")

    def get(self, key: str, default=None):
        """Return a configuration value by key, or *default* if not found."""
        return self.data.get(key, default)

    def set(self, key: str, value) -> None:
        """
        Update a configuration value in memory.

        Call save() afterwards to persist the change to disk.
        """
        self.data[key] = value
