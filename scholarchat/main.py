from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from scholarchat.api.deps import get_orchestrator
from scholarchat.api.routes import chat
from scholarchat.config import settings
from scholarchat.errors import ChatError
from scholarchat.services import logger as log_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    log_service.log_event(
        event_type="app_started",
        message="scholarchat API started",
        model=settings.openai_model,
        catalog=settings.catalog_base_url,
    )
    yield
    # Shutdown: stop any stream still writing into the transcript
    get_orchestrator().abort()


app = FastAPI(
    title="scholarchat",
    description="Conversational search over academic works with streamed summaries",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(chat.router)


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    log_service.log_event(
        event_type="request_failed",
        message=str(exc),
        path=request.url.path,
        error_type=type(exc).__name__,
    )
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "scholarchat"}
