import logging
import secrets
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from database import LEGACY_ID_SIZE, StateStore, StoreError, get_store, unique_id
from logging_config import setup_logging
from schemas import LegacySaveResponse, SaveStateRequest, SaveStateResponse, StateResponse

setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
logger = logging.getLogger(__name__)

LEGACY_PREFIX = "calendar:"

app = FastAPI(
    title="Calendar State API",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # malformed bodies are client errors, not 422s
    return JSONResponse(status_code=400, content={"detail": "Invalid request body"})


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    # raised while opening the store, before any handler runs
    logger.error(f"state store unavailable: {exc}")
    return JSONResponse(status_code=500, content={"detail": "State store unavailable"})


@app.get("/")
def root():
    return {"message": "Calendar state backend running"}


@app.get("/test")
def store_status():
    response = {
        "backend": "✅ Running",
        "store": None,
        "connection_status": "Not Connected",
    }
    try:
        store = get_store()
        response["store"] = store.name
        if store.ping():
            response["connection_status"] = "Connected"
    except Exception as e:
        response["connection_status"] = f"❌ Error: {str(e)[:50]}"
    return response


# ------- State -------
def _password_matches(stored: Any, supplied: str) -> bool:
    if not isinstance(stored, str):
        return False
    return secrets.compare_digest(stored.encode("utf-8"), supplied.encode("utf-8"))


@app.get("/api/state", response_model=StateResponse)
def get_state(id: Optional[str] = None, store: StateStore = Depends(get_store)):
    if not id:
        raise HTTPException(status_code=400, detail="ID is required")
    try:
        record = store.get(id)
    except StoreError:
        logger.exception("state fetch failed")
        raise HTTPException(status_code=500, detail="Failed to load calendar state")
    if record is None:
        raise HTTPException(status_code=404, detail="State not found")

    safe_state = {k: v for k, v in (record.get("state") or {}).items() if k != "password"}
    logger.info(f"state fetched: {id}", extra={"meta": {"id": id}})
    return {"state": safe_state}


@app.api_route("/api/state", methods=["POST", "PUT"], response_model=SaveStateResponse)
def save_state(payload: SaveStateRequest, store: StateStore = Depends(get_store)):
    try:
        if payload.id:
            state_id = payload.id
            existing = store.get(state_id)
            if existing is not None and not _password_matches(existing.get("password"), payload.password):
                logger.warning(f"state update rejected: {state_id}", extra={"meta": {"id": state_id}})
                raise HTTPException(status_code=403, detail="Not authorized to update this state")
        else:
            state_id = unique_id(store)

        state = payload.state.model_dump(by_alias=True, exclude_unset=True)
        state.update(payload.state.model_extra or {})
        record = {
            "state": state,
            "password": payload.password,
        }
        store.set(state_id, record, ttl=settings.STATE_TTL_SECONDS)
    except StoreError:
        logger.exception("state save failed")
        raise HTTPException(status_code=500, detail="Failed to save calendar state")

    action = "updated" if payload.id else "created"
    logger.info(f"state {action}: {state_id}", extra={"meta": {"id": state_id}})
    return {"id": state_id}


# ------- Legacy -------
@app.post("/api/save", response_model=LegacySaveResponse)
def legacy_save(body: Dict[str, Any] = Body(...), store: StateStore = Depends(get_store)):
    try:
        state_id = unique_id(store, LEGACY_ID_SIZE, prefix=LEGACY_PREFIX)
        store.set(LEGACY_PREFIX + state_id, body)
    except StoreError:
        logger.exception("legacy save failed")
        raise HTTPException(status_code=500, detail="Failed to save calendar state")
    return {"success": True, "id": state_id}


@app.get("/api/{id}")
def legacy_get(id: str, store: StateStore = Depends(get_store)):
    try:
        data = store.get(LEGACY_PREFIX + id)
    except StoreError:
        logger.exception("legacy fetch failed")
        raise HTTPException(status_code=500, detail="Failed to load calendar state")
    if data is None:
        raise HTTPException(status_code=404, detail="Calendar not found")
    return data


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
