import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y", "on")


class Config:
    # Azure AD Configuration
    TENANT_ID = os.getenv("AZ_TENANT_ID", "organizations")
    # Microsoft Graph PowerShell public client, usable for delegated sign-in
    CLIENT_ID = os.getenv("AZ_CLIENT_ID", "14d82eec-204b-4c2f-b7e8-296a70dab67e")
    CLIENT_SECRET = os.getenv("AZ_CLIENT_SECRET")
    AUTH_METHOD = os.getenv("APPROLE_AUTH_METHOD", "auto")

    # Microsoft Graph
    GRAPH_BASE = "https://graph.microsoft.com/v1.0"
    DELEGATED_SCOPES = [
        "https://graph.microsoft.com/User.Read.All",
        "https://graph.microsoft.com/Group.Read.All",
        "https://graph.microsoft.com/Application.Read.All",
        "https://graph.microsoft.com/AppRoleAssignment.ReadWrite.All",
    ]
    APP_ONLY_SCOPES = ["https://graph.microsoft.com/.default"]
    REQUEST_TIMEOUT = int(os.getenv("APPROLE_REQUEST_TIMEOUT", "120"))

    # Log sink
    LOG_DIR = os.getenv("APPROLE_LOG_DIR", os.getcwd())

    # Resolution policy
    CONFIRM_SINGLE_MATCH = _env_bool("APPROLE_CONFIRM_SINGLE_MATCH", True)
    RETRY_ON_NO_MATCH = _env_bool("APPROLE_RETRY_ON_NO_MATCH", True)
    SEARCH_SCAN_SIZE = int(os.getenv("APPROLE_SEARCH_SCAN_SIZE", "100"))
    BROADEN_SEARCH = _env_bool("APPROLE_BROADEN_SEARCH", False)

    # Session bootstrap (opt-in)
    REQUIRE_ELEVATION = _env_bool("APPROLE_REQUIRE_ELEVATION", False)


config = Config()
GRAPH_BASE = Config.GRAPH_BASE
