import logging
from datetime import timedelta
from typing import Optional, Tuple

import firebase_admin
import httpx
from firebase_admin import auth, credentials

from .config import Settings
from .errors import ConfigurationError, IdentityError
from .schemas import AuthUser

logger = logging.getLogger(__name__)

# Identity Toolkit error codes -> text shown on the login / signup forms.
IDENTITY_ERROR_MESSAGES = {
    "EMAIL_EXISTS": "An account with this email already exists.",
    "EMAIL_NOT_FOUND": "Invalid email or password.",
    "INVALID_PASSWORD": "Invalid email or password.",
    "INVALID_LOGIN_CREDENTIALS": "Invalid email or password.",
    "USER_DISABLED": "This account has been disabled.",
    "WEAK_PASSWORD": "Password must be at least 6 characters long.",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "Too many attempts. Please try again later.",
}


def init_firebase(settings: Settings) -> Optional[firebase_admin.App]:
    """Initialise the Firebase Admin SDK once; returns None when credentials are unusable."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass
    try:
        cred = credentials.Certificate(settings.firebase_credentials)
        app = firebase_admin.initialize_app(cred)
        logger.info("✅ Firebase Admin SDK initialized successfully.")
        return app
    except Exception as e:
        logger.error("❌ Error initializing Firebase Admin SDK: %s", e)
        return None


class IdentityService:
    """Email/password accounts on Firebase Authentication.

    Sign-in and sign-up go through the Identity Toolkit REST API with the
    project's web API key; token and session-cookie checks go through the
    Admin SDK.
    """

    def __init__(
        self,
        api_key: Optional[str],
        app: Optional[firebase_admin.App],
        api_base: str = "https://identitytoolkit.googleapis.com/v1",
        session_days: int = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.app = app
        self.api_base = api_base.rstrip("/")
        self.session_lifetime = timedelta(days=session_days)
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, app: Optional[firebase_admin.App]) -> "IdentityService":
        return cls(
            api_key=settings.firebase_web_api_key,
            app=app,
            api_base=settings.identity_api_base,
            session_days=settings.session_days,
        )

    async def _call(self, method: str, payload: dict) -> dict:
        if not self.api_key:
            raise ConfigurationError("Authentication service is not configured.")
        url = f"{self.api_base}/accounts:{method}"
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=30) as client:
                response = await client.post(url, params={"key": self.api_key}, json=payload)
        except httpx.HTTPError as e:
            raise IdentityError(f"Could not reach the authentication service: {e}") from e
        if response.is_error:
            try:
                raw = response.json()["error"]["message"]
            except (ValueError, KeyError, TypeError):
                raw = f"Authentication request failed with status {response.status_code}."
            code = raw.split(" : ")[0].strip()
            raise IdentityError(IDENTITY_ERROR_MESSAGES.get(code, raw), code=code)
        return response.json()

    async def sign_in(self, email: str, password: str) -> Tuple[AuthUser, str]:
        data = await self._call(
            "signInWithPassword", {"email": email, "password": password, "returnSecureToken": True}
        )
        user = AuthUser(uid=data["localId"], email=data.get("email"), display_name=data.get("displayName") or None)
        logger.info("User %s signed in.", user.uid)
        return user, data["idToken"]

    async def sign_up(self, email: str, password: str, display_name: Optional[str] = None) -> Tuple[AuthUser, str]:
        data = await self._call("signUp", {"email": email, "password": password, "returnSecureToken": True})
        id_token = data["idToken"]
        if display_name:
            # the account already exists at this point, so a failed name update must not fail sign-up
            try:
                updated = await self._call(
                    "update", {"idToken": id_token, "displayName": display_name, "returnSecureToken": True}
                )
                id_token = updated.get("idToken", id_token)
            except IdentityError as e:
                logger.warning("⚠️ Could not set display name for new user %s: %s", data["localId"], e)
                display_name = None
        user = AuthUser(uid=data["localId"], email=data.get("email"), display_name=display_name or None)
        logger.info("✅ New account created for user %s.", user.uid)
        return user, id_token

    def _require_app(self) -> firebase_admin.App:
        if self.app is None:
            raise ConfigurationError("Authentication service unavailable.")
        return self.app

    def create_session_cookie(self, id_token: str) -> str:
        return auth.create_session_cookie(id_token, expires_in=self.session_lifetime, app=self._require_app())

    def verify_id_token(self, id_token: str) -> dict:
        return auth.verify_id_token(id_token, app=self._require_app())

    def verify_session_cookie(self, cookie: str) -> dict:
        return auth.verify_session_cookie(cookie, app=self._require_app())
