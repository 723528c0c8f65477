from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .db import init_db
from .routers import jobs

settings = get_settings()

app = FastAPI(title="Receipt Pipeline API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(jobs.router, prefix=settings.api_prefix)


@app.on_event("startup")
def on_startup() -> None:
    """Ensure database tables exist."""
    init_db()


@app.get("/")
def health_check() -> dict[str, str]:
    return {"status": "ok"}
