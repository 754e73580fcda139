import sys
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_WINDOWS_PROTECTED_PATHS = (
    r"C:\Windows",
    r"C:\Program Files",
    r"C:\Program Files (x86)",
    r"C:\ProgramData",
    r"C:\System Volume Information",
    r"C:\$Recycle.Bin",
)

_POSIX_PROTECTED_PATHS = (
    "/bin",
    "/sbin",
    "/usr/bin",
    "/usr/sbin",
    "/usr/local/bin",
    "/usr/local/sbin",
    "/etc",
    "/boot",
    "/sys",
    "/proc",
    "/dev",
    "/lib",
    "/lib64",
    "/usr/lib",
    "/usr/lib64",
)

_DARWIN_PROTECTED_PATHS = _POSIX_PROTECTED_PATHS + (
    "/System",
    "/Library",
    "/private/etc",
)


def default_protected_paths(platform: str = sys.platform) -> list[str]:
    """Return the built-in deny-list for ``platform``."""

    if platform.startswith("win"):
        return list(_WINDOWS_PROTECTED_PATHS)
    if platform == "darwin":
        return list(_DARWIN_PROTECTED_PATHS)
    return list(_POSIX_PROTECTED_PATHS)


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_name: str = "safebin"
    app_version: str = "0.1.0"

    # Overrides the platform trash location when set
    trash_root: Path | None = None

    max_concurrency: int = Field(default=10, ge=1, le=100)
    restore_max_concurrency: int = Field(default=4, ge=1, le=100)
    checksum_max_bytes: int = 100 * 1024 * 1024  # 100MB, larger files are verified by size only
    max_path_bytes: int = 4096

    verify_integrity: bool = True
    overwrite_existing: bool = False
    restore_list_limit: int = 0  # 0 = unlimited
    trash_retention_days: int = 0  # 0 = Empty is never blocked

    protected_paths: list[str] | None = None
    extra_protected_paths: str | list[str] = ""

    # Bearer token required by the /trash endpoints; unset refuses them all
    api_token: str | None = None

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SAFEBIN_",
        extra="ignore",
    )

    @property
    def resolved_extra_protected_paths(self) -> list[str]:
        """Return the configured extra protected paths as a normalized list."""

        if isinstance(self.extra_protected_paths, str):
            return [
                entry.strip()
                for entry in self.extra_protected_paths.split(",")
                if entry.strip()
            ]

        return list(self.extra_protected_paths)

    @property
    def resolved_protected_paths(self) -> list[str]:
        """Return the full deny-list: platform defaults (or explicit override) plus extras."""

        base = list(self.protected_paths) if self.protected_paths is not None else default_protected_paths()
        return base + self.resolved_extra_protected_paths
