import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# --- Environment Variable Loading ---
load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-1.5-flash-latest"
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_timeout: float = 60.0

    firebase_web_api_key: Optional[str] = None
    firebase_credentials: str = "firebase-adminsdk.json"
    identity_api_base: str = "https://identitytoolkit.googleapis.com/v1"

    session_cookie_name: str = "session"
    session_days: int = 5
    secure_cookies: bool = False

    max_upload_mb: float = 5.0
    image_max_side: int = 1024

    log_level: str = "INFO"

    @property
    def max_upload_bytes(self) -> int:
        return int(self.max_upload_mb * 1024 * 1024)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            gemini_model=os.getenv("GEMINI_MODEL", cls.model_fields["gemini_model"].default),
            gemini_api_base=os.getenv("GEMINI_API_BASE", cls.model_fields["gemini_api_base"].default),
            gemini_timeout=float(os.getenv("GEMINI_TIMEOUT", "60")),
            firebase_web_api_key=os.getenv("FIREBASE_WEB_API_KEY") or None,
            firebase_credentials=os.getenv("FIREBASE_CREDENTIALS", "firebase-adminsdk.json"),
            session_cookie_name=os.getenv("SESSION_COOKIE_NAME", "session"),
            session_days=int(os.getenv("SESSION_DAYS", "5")),
            secure_cookies=_env_bool("SECURE_COOKIES"),
            max_upload_mb=float(os.getenv("MAX_UPLOAD_MB", "5")),
            image_max_side=int(os.getenv("IMAGE_MAX_SIDE", "1024")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()
