from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from api.routers import prompts, system
from infra.repositories.factory import create_prompt_repository
from utils.logger import get_logger

from config import settings

logger = get_logger(__name__)

# Lifespan event to handle startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    repository = create_prompt_repository(settings)
    repository.connect()  # file: index.json作成 / database: スキーマ作成 + Alembic
    if not repository.health_check():
        raise RuntimeError("Health check failed")
    logger.info(f"Prompt storage ready ({settings.STORAGE_BACKEND})")
    app.state.repository = repository
    yield
    repository.disconnect()
    logger.info("Prompt storage disconnected")

app = FastAPI(title="Prompt Manager API", lifespan=lifespan)

# CORS Configuration
origins = [
    f"http://localhost:{settings.PROMPT_MANAGER_PORT}",
    f"http://127.0.0.1:{settings.PROMPT_MANAGER_PORT}",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Root endpoint for health check
@app.get("/")
async def root():
    return {"message": "Prompt Manager API is running"}

# Include Routers
app.include_router(prompts.router)
app.include_router(system.router)
