import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from autoapi.app.api import api_service, audit, datasource, testing
from autoapi.app.core.config import settings
from autoapi.app.core.db import create_db_and_tables
from autoapi.app.core.errors import register_error_handlers
from autoapi.app.core.logging_config import configure_logging
from autoapi.app.services.datasource_service import factory

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    create_db_and_tables()
    logger.info(f"{settings.PROJECT_NAME} started")
    yield
    factory.close_all()
    logger.info("Closed data source pools")


app = FastAPI(lifespan=lifespan, title=settings.PROJECT_NAME)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify the frontend origin
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(datasource.router, prefix=settings.API_V1_STR)
app.include_router(api_service.router, prefix=settings.API_V1_STR)
app.include_router(testing.router, prefix=settings.API_V1_STR)
app.include_router(audit.router, prefix=settings.API_V1_STR)


@app.get("/")
def read_root():
    return {"message": "Welcome to AutoAPI Service"}
