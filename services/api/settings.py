# services/api/settings.py
from pydantic_settings import BaseSettings
from pydantic import ConfigDict, Field
import base64
from typing import List, Optional
from pathlib import Path

class Settings(BaseSettings):
    # Storage settings
    # "webhook" = Apps Script web app, "sheets" = direct gspread access,
    # "none" = local history only (no remote sync)
    storage_backend: str = "webhook"
    webhook_url: str = ""
    google_sa_json: str = ""
    google_sa_json_base64: str = ""
    sheets_spreadsheet_id: str = ""

    # Worksheet/tab names used by the direct Sheets backend
    sheets_history_tab: str = "History"
    sheets_products_tab: str = "Products"
    sheets_partitions_tab: str = "Partitions"
    sheets_users_tab: str = "Users"
    sheets_settings_tab: str = "Settings"

    # Local history (fallback of record when the sheet is unreachable)
    data_dir: str = "data"

    # ===== Yield gate =====
    # Save is rejected when yield falls outside [min_yield, max_yield]
    # and the gate is enabled.
    min_yield: float = 10
    max_yield: float = 98
    yield_control_enabled: bool = False

    # ===== Commentary =====
    ai_analysis_enabled: bool = True
    # Optional endpoint that returns {"message": ..., "motivationalQuote": ...}
    commentary_url: str = ""

    # Outbound HTTP
    http_timeout_seconds: float = 30.0
    catalog_cache_ttl: int = 60

    # Open shifts nobody touched for this long are dropped
    shift_ttl_seconds: int = 12 * 60 * 60

    # Login when no remote user directory is configured (STORAGE_BACKEND=none):
    # any login gets a session with `local_role`; `local_password`, when set,
    # must match (cleartext or sha256 hex, as in the Users sheet)
    local_role: str = "employee"
    local_password: str = ""

    # Timezone used to decide whether a history entry is "today"
    local_timezone: str = "Europe/Moscow"

    # CORS settings
    allowed_origins: str = "http://localhost:3000,http://localhost:5173"

    # Max rows written to one Excel analytics export
    max_rows_per_report: int = Field(
        default=5000,
        description="Upper bound on history rows included in one Excel export",
    )

    model_config = ConfigDict(
        # Always load .env from the same folder as this settings.py
        env_file=str(Path(__file__).resolve().parent / ".env"),
        extra="ignore",
    )


    def resolved_google_sa_json(self) -> str:
        """
        Return the path to the service account JSON.
        If GOOGLE_SA_JSON_BASE64 is set, decode it to a temp file.
        Otherwise return GOOGLE_SA_JSON path.
        """
        if self.google_sa_json_base64:
            import tempfile

            decoded = base64.b64decode(self.google_sa_json_base64)
            temp_file = tempfile.NamedTemporaryFile(mode='w', delete=False, suffix='.json')
            temp_file.write(decoded.decode('utf-8'))
            temp_file.close()
            return temp_file.name

        return self.google_sa_json

    def get_origins_list(self) -> List[str]:
        """Parse comma-separated origins into a list."""
        if not self.allowed_origins:
            return ["*"]
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


_settings_instance: Optional[Settings] = None

def get_settings() -> Settings:
    """Singleton pattern for settings."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
