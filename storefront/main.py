import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from storefront.database import engine
from storefront.infrastructure.db_schema import metadata
from storefront.presentation.api import router
from storefront.presentation.admin_api import router as admin_router

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    logger.info("Tables ready")

    yield

    await engine.dispose()
    logger.info("Storefront stopped")


app = FastAPI(
    title="Storefront",
    description="Order lifecycle and inventory reconciliation",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/health")
async def health():
    return {"status": "healthy"}
