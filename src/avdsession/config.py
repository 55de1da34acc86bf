"""Centralised configuration via Pydantic Settings."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings

_HOME_DIR = Path.home() / ".avdsession"


class Settings(BaseSettings):
    """Application-wide configuration loaded from environment variables."""

    model_config = {"env_prefix": "AVDSESSION_", "frozen": True, "populate_by_name": True}

    # Filesystem
    workspaces_dir: str = str(_HOME_DIR / "workspaces")
    logs_dir: str = str(_HOME_DIR / "logs")

    # Android SDK. Tool paths left blank are derived from the SDK root.
    android_sdk_root: str = Field(
        default="",
        validation_alias=AliasChoices("AVDSESSION_ANDROID_SDK_ROOT", "ANDROID_HOME", "ANDROID_SDK_ROOT"),
    )
    emulator_path: str = ""
    adb_path: str = ""
    avdmanager_path: str = ""
    sdkmanager_path: str = ""
    rootavd_path: str = str(_HOME_DIR / "rootAVD" / "rootAVD.sh")
    openssl_path: str = "openssl"
    # Comma-separated Magisk module zips installed right after rooting.
    magisk_modules: str = ""

    # Emulator ports: console port is even, adb port is console + 1
    default_emulator_port: int = 5554
    max_emulator_port: int = 5682
    port_retry_attempts: int = 3

    # Boot
    boot_timeout_seconds: float = 120.0
    boot_poll_interval_seconds: float = 2.0
    command_timeout_seconds: float = 30.0
    sdk_install_timeout_seconds: float = 1800.0
    rooting_timeout_seconds: float = 600.0

    # Sessions
    max_sessions: int = 4
    headless: bool = True

    # Managed AVD
    avd_name: str = "AvdSessionPhone"
    system_image: str = "system-images;android-34;google_apis_playstore;x86_64"
    device_profile: str = "pixel_6"

    log_level: str = "INFO"

    @property
    def sdk_root(self) -> Path:
        if self.android_sdk_root:
            return Path(self.android_sdk_root).expanduser()
        return Path.home() / "Android" / "Sdk"

    @property
    def emulator_bin(self) -> str:
        return self.emulator_path or str(self.sdk_root / "emulator" / "emulator")

    @property
    def adb_bin(self) -> str:
        return self.adb_path or str(self.sdk_root / "platform-tools" / "adb")

    @property
    def avdmanager_bin(self) -> str:
        return self.avdmanager_path or str(self.sdk_root / "cmdline-tools" / "latest" / "bin" / "avdmanager")

    @property
    def sdkmanager_bin(self) -> str:
        return self.sdkmanager_path or str(self.sdk_root / "cmdline-tools" / "latest" / "bin" / "sdkmanager")

    @property
    def ramdisk_relpath(self) -> str:
        """Ramdisk path relative to the SDK root, as the rooting script expects it."""
        return os.path.join(*self.system_image.split(";"), "ramdisk.img")

    @property
    def magisk_module_paths(self) -> list[str]:
        return [p.strip() for p in self.magisk_modules.split(",") if p.strip()]


def get_settings() -> Settings:
    """Return settings loaded from the environment."""
    return Settings()
