import logging
from pathlib import Path
from typing import Callable, Optional

import uvicorn
from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from .config import Settings, get_settings
from .errors import (
    RATE_LIMIT_MESSAGE,
    ConfigurationError,
    IdentityError,
    ImageValidationError,
    friendly_error,
)
from .gemini import GeminiClient, generate_plant_disease_cure, recommend_crop
from .history import (
    CROP_RECOMMENDATIONS,
    DISEASE_DETECTIONS,
    HistoryStore,
    UnknownHistoryKind,
    init_firestore,
)
from .identity import IdentityService, init_firebase
from .imaging import from_data_uri, to_data_uri
from .schemas import (
    FIELD_RANGES,
    FIELD_UNITS,
    ActionResult,
    AuthUser,
    CropRecommendationInput,
    DiseaseDetectionInput,
    HistoryResponse,
    LoginRequest,
    SignupRequest,
    sample_conditions,
)

BASE_DIR = Path(__file__).resolve().parent

# --- Logging ---
logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# --- FastAPI App Initialization ---
app = FastAPI(title="AgriSmart AI")
app.mount("/static", StaticFiles(directory=BASE_DIR / "static"), name="static")
templates = Jinja2Templates(directory=BASE_DIR / "templates")


# --- Service Setup on Startup ---
@app.on_event("startup")
async def init_services():
    settings = get_settings()
    firebase_app = init_firebase(settings)
    db = init_firestore(firebase_app)
    app.state.identity = IdentityService.from_settings(settings, firebase_app)
    app.state.history = HistoryStore(db) if db is not None else None
    app.state.gemini = GeminiClient.from_settings(settings)

    if not settings.gemini_api_key:
        logger.warning("⚠️ GEMINI_API_KEY not found in environment. AI features will fail.")
    if not settings.firebase_web_api_key:
        logger.warning("⚠️ FIREBASE_WEB_API_KEY not found in environment. Sign-in and sign-up are disabled.")
    if db is None:
        logger.warning("⚠️ Firestore unavailable. History will not be saved.")


# --- Dependencies ---
def get_gemini(request: Request) -> GeminiClient:
    gemini = getattr(request.app.state, "gemini", None)
    if gemini is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="AI service unavailable.")
    return gemini


def get_identity(request: Request) -> IdentityService:
    identity = getattr(request.app.state, "identity", None)
    if identity is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Authentication service unavailable.")
    return identity


def get_optional_history(request: Request) -> Optional[HistoryStore]:
    return getattr(request.app.state, "history", None)


def get_history(store: Optional[HistoryStore] = Depends(get_optional_history)) -> HistoryStore:
    if store is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database service unavailable.")
    return store


# --- Authentication ---
oauth2_scheme = HTTPBearer(auto_error=False)


def _verify(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
    identity: IdentityService,
    settings: Settings,
) -> Optional[dict]:
    if credentials:
        return identity.verify_id_token(credentials.credentials)
    cookie = request.cookies.get(settings.session_cookie_name)
    if cookie:
        return identity.verify_session_cookie(cookie)
    return None


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(oauth2_scheme),
    identity: IdentityService = Depends(get_identity),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        user = _verify(request, credentials, identity, settings)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Invalid credentials: {e}")
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated.")
    return user


def get_optional_user(
    request: Request,
    identity: IdentityService = Depends(get_identity),
    settings: Settings = Depends(get_settings),
) -> Optional[dict]:
    try:
        return _verify(request, None, identity, settings)
    except Exception as e:
        logger.info("Session cookie rejected: %s", e)
        return None


def _login_redirect() -> RedirectResponse:
    return RedirectResponse("/login", status_code=status.HTTP_303_SEE_OTHER)


def _page(request: Request, name: str, user: Optional[dict] = None, **context) -> HTMLResponse:
    return templates.TemplateResponse(request, name, {"user": user, **context})


@app.exception_handler(ImageValidationError)
async def image_validation_error_handler(request: Request, exc: ImageValidationError):
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


# --- HTML PAGE SERVING ROUTES ---
@app.get("/", response_class=HTMLResponse)
def serve_home_page(request: Request, user: Optional[dict] = Depends(get_optional_user)):
    if not user:
        return _login_redirect()
    return _page(request, "home.html", user)


@app.get("/crop-recommendation", response_class=HTMLResponse)
def serve_crop_recommendation_page(request: Request, user: Optional[dict] = Depends(get_optional_user)):
    if not user:
        return _login_redirect()
    return _page(request, "crop_recommendation.html", user, ranges=FIELD_RANGES, units=FIELD_UNITS)


@app.get("/plant-disease-detection", response_class=HTMLResponse)
def serve_plant_disease_page(
    request: Request,
    user: Optional[dict] = Depends(get_optional_user),
    settings: Settings = Depends(get_settings),
):
    if not user:
        return _login_redirect()
    return _page(request, "plant_disease_detection.html", user, max_upload_mb=settings.max_upload_mb)


@app.get("/history", response_class=HTMLResponse)
def serve_history_page(
    request: Request,
    user: Optional[dict] = Depends(get_optional_user),
    store: Optional[HistoryStore] = Depends(get_optional_history),
):
    if not user:
        return _login_redirect()
    history, error = HistoryResponse(), None
    if store is None:
        error = "Database service unavailable."
    else:
        try:
            history = HistoryResponse(
                crop_recommendations=store.list(user["uid"], CROP_RECOMMENDATIONS),
                disease_detections=store.list(user["uid"], DISEASE_DETECTIONS),
            )
        except Exception as e:
            logger.exception("❌ Could not load history for %s", user["uid"])
            error = f"Could not load history: {e}"
    return _page(request, "history.html", user, history=history, error=error)


@app.get("/login", response_class=HTMLResponse)
def serve_login_page(request: Request, user: Optional[dict] = Depends(get_optional_user)):
    if user:
        return RedirectResponse("/", status_code=status.HTTP_303_SEE_OTHER)
    return _page(request, "auth.html", mode="login")


@app.get("/signup", response_class=HTMLResponse)
def serve_signup_page(request: Request, user: Optional[dict] = Depends(get_optional_user)):
    if user:
        return RedirectResponse("/", status_code=status.HTTP_303_SEE_OTHER)
    return _page(request, "auth.html", mode="signup")


@app.get("/healthz")
def health(request: Request, settings: Settings = Depends(get_settings)):
    identity = getattr(request.app.state, "identity", None)
    return {
        "status": "ok",
        "ai_configured": bool(settings.gemini_api_key),
        "auth_configured": bool(identity is not None and identity.app is not None and settings.firebase_web_api_key),
        "history_configured": getattr(request.app.state, "history", None) is not None,
    }


# --- AUTH ENDPOINTS ---
async def _start_session(user: AuthUser, id_token: str, identity: IdentityService, settings: Settings) -> JSONResponse:
    try:
        session_cookie = await run_in_threadpool(identity.create_session_cookie, id_token)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except Exception as e:
        logger.exception("❌ Could not create a session for %s", user.uid)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Could not start a session: {e}")
    response = JSONResponse(content=user.model_dump(by_alias=True))
    response.set_cookie(
        settings.session_cookie_name,
        session_cookie,
        max_age=settings.session_days * 24 * 60 * 60,
        httponly=True,
        secure=settings.secure_cookies,
        samesite="lax",
    )
    return response


@app.post("/api/auth/login")
async def login(
    credentials: LoginRequest,
    identity: IdentityService = Depends(get_identity),
    settings: Settings = Depends(get_settings),
):
    try:
        user, id_token = await identity.sign_in(credentials.email, credentials.password)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except IdentityError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return await _start_session(user, id_token, identity, settings)


@app.post("/api/auth/signup", status_code=status.HTTP_201_CREATED)
async def signup(
    details: SignupRequest,
    identity: IdentityService = Depends(get_identity),
    settings: Settings = Depends(get_settings),
):
    try:
        user, id_token = await identity.sign_up(details.email, details.password, details.display_name)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except IdentityError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    response = await _start_session(user, id_token, identity, settings)
    response.status_code = status.HTTP_201_CREATED
    return response


@app.post("/api/auth/logout")
def logout(settings: Settings = Depends(get_settings)):
    response = JSONResponse(content={"status": "success"})
    response.delete_cookie(settings.session_cookie_name)
    return response


# --- ACTION ENDPOINTS ---
async def _run_action(label: str, call, save: Optional[Callable] = None) -> JSONResponse:
    """Run one AI call and wrap its outcome in an ActionResult.

    A successful result is saved to history when a store is available; a
    failed history write is logged and does not fail the action.
    """
    try:
        output = await call()
    except Exception as e:
        logger.exception("❌ %s failed", label)
        message = friendly_error(e)
        code = status.HTTP_429_TOO_MANY_REQUESTS if message == RATE_LIMIT_MESSAGE else status.HTTP_502_BAD_GATEWAY
        return JSONResponse(status_code=code, content=ActionResult(error=message).model_dump(by_alias=True, mode="json"))

    history_id = None
    if save is not None:
        try:
            history_id = await run_in_threadpool(save, output)
        except Exception as e:
            logger.error("⚠️ %s succeeded but could not be saved to history: %s", label, e)
    result = ActionResult(data=output, history_id=history_id)
    return JSONResponse(content=result.model_dump(by_alias=True, mode="json"))


@app.get("/api/crop-recommendation/sample", response_model=CropRecommendationInput)
def get_sample_conditions(user: dict = Depends(get_current_user)):
    return sample_conditions()


@app.post("/api/crop-recommendation", response_model=ActionResult)
async def get_recommendation(
    conditions: CropRecommendationInput,
    user: dict = Depends(get_current_user),
    gemini: GeminiClient = Depends(get_gemini),
    store: Optional[HistoryStore] = Depends(get_optional_history),
):
    save = None
    if store is not None:
        save = lambda output: store.add_crop_recommendation(user["uid"], conditions, output)  # noqa: E731
    return await _run_action("Crop recommendation", lambda: recommend_crop(gemini, conditions), save)


async def _diagnose(photo: DiseaseDetectionInput, user: dict, gemini: GeminiClient, store: Optional[HistoryStore]):
    save = None
    if store is not None:
        save = lambda output: store.add_disease_detection(user["uid"], photo.photo_data_uri, output)  # noqa: E731
    return await _run_action("Plant disease diagnosis", lambda: generate_plant_disease_cure(gemini, photo), save)


@app.post("/api/plant-disease-detection", response_model=ActionResult)
async def get_disease_cure(
    file: UploadFile = File(...),
    user: dict = Depends(get_current_user),
    gemini: GeminiClient = Depends(get_gemini),
    store: Optional[HistoryStore] = Depends(get_optional_history),
    settings: Settings = Depends(get_settings),
):
    # one byte past the limit is enough to reject an oversized upload
    image_bytes = await file.read(settings.max_upload_bytes + 1)
    data_uri = await run_in_threadpool(to_data_uri, image_bytes, settings.max_upload_bytes, settings.image_max_side)
    return await _diagnose(DiseaseDetectionInput(photo_data_uri=data_uri), user, gemini, store)


@app.post("/api/plant-disease-detection/data-uri", response_model=ActionResult)
async def get_disease_cure_from_data_uri(
    photo: DiseaseDetectionInput,
    user: dict = Depends(get_current_user),
    gemini: GeminiClient = Depends(get_gemini),
    store: Optional[HistoryStore] = Depends(get_optional_history),
    settings: Settings = Depends(get_settings),
):
    data_uri = await run_in_threadpool(
        to_data_uri, from_data_uri(photo.photo_data_uri), settings.max_upload_bytes, settings.image_max_side
    )
    return await _diagnose(DiseaseDetectionInput(photo_data_uri=data_uri), user, gemini, store)


# --- HISTORY ENDPOINTS ---
@app.get("/api/history", response_model=HistoryResponse)
def get_history_records(user: dict = Depends(get_current_user), store: HistoryStore = Depends(get_history)):
    try:
        history = HistoryResponse(
            crop_recommendations=store.list(user["uid"], CROP_RECOMMENDATIONS),
            disease_detections=store.list(user["uid"], DISEASE_DETECTIONS),
        )
    except Exception as e:
        logger.exception("❌ Could not load history for %s", user["uid"])
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Could not load history: {e}")
    return JSONResponse(content=history.model_dump(by_alias=True, mode="json"))


@app.get("/api/history/{kind}")
def get_history_kind(kind: str, user: dict = Depends(get_current_user), store: HistoryStore = Depends(get_history)):
    try:
        records = store.list(user["uid"], kind)
    except UnknownHistoryKind:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown history type '{kind}'.")
    except Exception as e:
        logger.exception("❌ Could not load %s for %s", kind, user["uid"])
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Could not load history: {e}")
    return JSONResponse(content=[record.model_dump(by_alias=True, mode="json") for record in records])


@app.delete("/api/history/{kind}/{record_id}")
def delete_history_record(
    kind: str,
    record_id: str,
    user: dict = Depends(get_current_user),
    store: HistoryStore = Depends(get_history),
):
    try:
        deleted = store.delete(user["uid"], kind, record_id)
    except UnknownHistoryKind:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown history type '{kind}'.")
    except Exception as e:
        logger.exception("❌ Could not delete %s/%s for %s", kind, record_id, user["uid"])
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Could not delete record: {e}")
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Record not found.")
    return JSONResponse(content={"status": "success", "deleted_id": record_id})


# --- Run App ---
def main():
    uvicorn.run("agrismart.app:app", host="0.0.0.0", port=8000, reload=True)


if __name__ == "__main__":
    main()
