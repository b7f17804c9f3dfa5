import os
from pathlib import Path
from typing import Mapping
from urllib.parse import quote_plus

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from constants.label_constants import BULK_LABEL_CAP
from utils.errors import ConfigurationError

ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
DEFAULT_ODBC_DRIVER = "ODBC Driver 18 for SQL Server"


class Settings(BaseModel):
    """Runtime settings, validated from environment variable names."""

    database_url: str
    label_company_name: str = Field(default="", alias="LABEL_COMPANY_NAME")
    label_bulk_cap: int = Field(default=BULK_LABEL_CAP, ge=1, alias="LABEL_BULK_CAP")
    label_fetch_attempts: int = Field(default=3, ge=1, alias="LABEL_FETCH_ATTEMPTS")
    label_fetch_backoff_seconds: float = Field(default=0.5, ge=0, alias="LABEL_FETCH_BACKOFF_SECONDS")

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


def odbc_connect_string(env: Mapping[str, str]) -> str:
    """ODBC connect string for SQL Server; DB_AUTH_METHOD is sql, windows or msi."""
    auth = (env.get("DB_AUTH_METHOD") or "sql").lower()
    parts = {
        "Driver": "{%s}" % env.get("DB_DRIVER", DEFAULT_ODBC_DRIVER),
        "Server": env.get("DB_SERVER"),
        "Database": env.get("DB_NAME"),
    }
    if auth == "windows":
        parts["Trusted_Connection"] = "yes"
    elif auth == "msi":
        parts["Authentication"] = "ActiveDirectoryMsi"
    elif auth == "sql":
        parts["Uid"] = env.get("DB_USER")
        parts["Pwd"] = env.get("DB_PASSWORD")
    else:
        raise ConfigurationError(f"DB_AUTH_METHOD must be sql, windows or msi, got {auth!r}")
    parts["Encrypt"] = env.get("DB_ENCRYPT", "yes")
    parts["TrustServerCertificate"] = env.get("DB_TRUST_CERT", "no")
    return "".join(f"{key}={value};" for key, value in parts.items())


def database_url(env: Mapping[str, str]) -> str:
    if env.get("DATABASE_URL"):
        return env["DATABASE_URL"]
    return f"mssql+pyodbc:///?odbc_connect={quote_plus(odbc_connect_string(env))}"


def load_settings(env: Mapping[str, str]) -> Settings:
    """Build Settings from `env`; bad values raise ConfigurationError naming the variable."""
    # Blank variables fall back to the defaults.
    values = {key: value for key, value in env.items() if value != ""}
    try:
        return Settings.model_validate({**values, "database_url": database_url(env)})
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from e


if ENV_PATH.exists():
    load_dotenv(dotenv_path=ENV_PATH)

SETTINGS = load_settings(os.environ)

SQLALCHEMY_URL = SETTINGS.database_url
LABEL_COMPANY_NAME = SETTINGS.label_company_name
LABEL_BULK_CAP = SETTINGS.label_bulk_cap
LABEL_FETCH_ATTEMPTS = SETTINGS.label_fetch_attempts
LABEL_FETCH_BACKOFF_SECONDS = SETTINGS.label_fetch_backoff_seconds
