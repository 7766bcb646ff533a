"""Configuration helpers for labprofile."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_DATA_ROOT = Path.home() / "labprofile-data"
DEFAULT_EUTILS_URL = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"
DEFAULT_IDCONV_URL = "https://www.ncbi.nlm.nih.gov/pmc/utils/idconv/v1.0"

# NCBI allows 3 req/s anonymously and 10 req/s with a key; both carry a margin.
NCBI_DELAY_WITH_KEY = 0.11
NCBI_DELAY_WITHOUT_KEY = 0.35


class Settings(BaseModel):
    """Runtime configuration loaded from env vars with sensible defaults."""

    data_dir: Path = Field(default_factory=lambda: DEFAULT_DATA_ROOT)
    db_filename: str = "profiles.sqlite3"
    log_level: str = "INFO"
    eutils_base_url: str = DEFAULT_EUTILS_URL
    idconv_base_url: str = DEFAULT_IDCONV_URL
    ncbi_api_key: str | None = None
    ncbi_email: str | None = None
    ncbi_tool: str = "labprofile"
    orcid_sandbox: bool = False
    http_timeout: float = 30.0

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_filename

    @property
    def ncbi_delay_seconds(self) -> float:
        """Pause inserted before every outbound call to the upstream services."""
        return NCBI_DELAY_WITH_KEY if self.ncbi_api_key else NCBI_DELAY_WITHOUT_KEY

    def ncbi_params(self) -> dict[str, str]:
        """Identification parameters NCBI asks every E-utilities client to send."""
        params = {"tool": self.ncbi_tool}
        if self.ncbi_api_key:
            params["api_key"] = self.ncbi_api_key
        if self.ncbi_email:
            params["email"] = self.ncbi_email
        return params

    def orcid_base_url(self, access_token: str | None = None) -> str:
        """Member API when a token is available, public API otherwise."""
        if self.orcid_sandbox:
            return "https://api.sandbox.orcid.org" if access_token else "https://pub.sandbox.orcid.org"
        return "https://api.orcid.org" if access_token else "https://pub.orcid.org"

    def ensure_directories(self) -> None:
        """Create data directories if they are missing."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def load(cls) -> "Settings":
        load_dotenv()
        data_dir = Path(os.environ.get("LABPROFILE_DATA_DIR", DEFAULT_DATA_ROOT))
        return cls(
            data_dir=data_dir,
            db_filename=os.environ.get("LABPROFILE_DB_FILENAME", "profiles.sqlite3"),
            log_level=os.environ.get("LABPROFILE_LOG_LEVEL", "INFO"),
            eutils_base_url=os.environ.get("LABPROFILE_EUTILS_URL", DEFAULT_EUTILS_URL),
            idconv_base_url=os.environ.get("LABPROFILE_IDCONV_URL", DEFAULT_IDCONV_URL),
            ncbi_api_key=os.environ.get("NCBI_API_KEY") or None,
            ncbi_email=os.environ.get("NCBI_EMAIL") or None,
            ncbi_tool=os.environ.get("LABPROFILE_NCBI_TOOL", "labprofile"),
            orcid_sandbox=os.environ.get("ORCID_SANDBOX", "").lower() == "true",
            http_timeout=float(os.environ.get("LABPROFILE_HTTP_TIMEOUT", "30")),
        )


def get_settings() -> Settings:
    """Convenience accessor for lazy modules."""
    settings = Settings.load()
    settings.ensure_directories()
    return settings
