"""bundlekit configuration via environment / .env file."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Library directories (alternates: comma separated in the environment) ---
    NAR_LIBRARY_DIRECTORY: Path = Path("./lib")
    NAR_LIBRARY_DIRECTORY_ALT: Annotated[list[Path], NoDecode] = []

    # --- Working directory (relative paths hang off each library's parent) ---
    NAR_WORKING_DIRECTORY: Path = Path("./work/extensions")

    # --- Archive discovery ---
    NAR_ARCHIVE_EXTENSIONS: Annotated[list[str], NoDecode] = [".nar"]

    # --- Extraction ---
    NAR_UNPACK_WORKERS: int = 1
    NAR_VERIFY_CHECKSUM: bool = False

    @field_validator("NAR_LIBRARY_DIRECTORY_ALT", mode="before")
    @classmethod
    def _split_alternates(cls, v: object) -> object:
        if isinstance(v, (str, Path)):
            return [part.strip() for part in str(v).split(",") if part.strip()]
        return v

    @field_validator("NAR_ARCHIVE_EXTENSIONS", mode="before")
    @classmethod
    def _normalize_extensions(cls, v: object) -> object:
        if isinstance(v, str):
            v = v.split(",")
        if not isinstance(v, (list, tuple)):
            return v
        normalized = []
        for ext in v:
            ext = str(ext).strip().lower()
            if not ext:
                continue
            normalized.append(ext if ext.startswith(".") else f".{ext}")
        if not normalized:
            raise ValueError("at least one archive extension is required")
        return normalized

    @field_validator("NAR_UNPACK_WORKERS")
    @classmethod
    def _positive_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError("NAR_UNPACK_WORKERS must be at least 1")
        return v

    @property
    def library_directories(self) -> list[Path]:
        """Primary library directory followed by the alternates, in order."""
        return [self.NAR_LIBRARY_DIRECTORY, *self.NAR_LIBRARY_DIRECTORY_ALT]


settings = Settings()
