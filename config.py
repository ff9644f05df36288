import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        auth_secret: str,
        token_max_age_hours: int,
        log_level: str,
        import_batch_size: int,
    ) -> None:
        self.database_url = database_url
        self.auth_secret = auth_secret
        self.token_max_age_hours = token_max_age_hours
        self.log_level = log_level
        self.import_batch_size = import_batch_size


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    auth_secret = os.getenv(
        "FINANCE_AUTH_SECRET",
        "3c1f0a9be4d27f58c6a0e2b91d4f7a36e85b0c2d9f4a1e7b6c3d8a0f5e2b9c14",
    )
    token_max_age_hours = int(os.getenv("FINANCE_TOKEN_MAX_AGE_HOURS", "24"))
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    import_batch_size = max(1, int(os.getenv("FINANCE_IMPORT_BATCH_SIZE", "100")))
    return Settings(
        database_url=database_url,
        auth_secret=auth_secret,
        token_max_age_hours=token_max_age_hours,
        log_level=log_level,
        import_batch_size=import_batch_size,
    )
