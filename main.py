import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo.database import Database
from pymongo.errors import PyMongoError

import accounts
import cart
import catalog
from config import Settings
from database import connect, ensure_indexes
from errors import install_error_handlers
from security import get_db

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(settings: Optional[Settings] = None, db: Optional[Database] = None) -> FastAPI:
    """Build the API around an explicit settings object and database handle.

    When `db` is omitted the connection is opened here, before the app
    exists; an unreachable database stops the process with exit code 1.
    Serve with `uvicorn main:create_app --factory` or `python main.py`.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings)
    if db is None:
        try:
            db = connect(settings)
        except PyMongoError as e:
            logger.error(f"MongoDB connection error: {e}")
            sys.exit(1)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ensure_indexes(app.state.db)
        logger.info(f"Storefront API ready ({settings.environment})")
        yield
        client = getattr(app.state.db, "client", None)
        if client is not None:
            client.close()
            logger.info("MongoDB connection closed")

    app = FastAPI(title="Storefront API", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.client_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
    )
    install_error_handlers(app)

    @app.get("/")
    def read_root():
        return {"message": "Storefront API"}

    @app.get("/health")
    def health(db: Database = Depends(get_db)):
        response = {"status": "OK", "database": "Not Available", "collections": []}
        try:
            response["collections"] = db.list_collection_names()
            response["database"] = "Connected"
        except PyMongoError as e:
            logger.warning(f"Health check could not reach MongoDB: {e}")
            response["status"] = "DEGRADED"
            response["database"] = f"Error: {str(e)[:80]}"
        return response

    app.include_router(accounts.router)
    app.include_router(catalog.router)
    app.include_router(cart.router)
    return app


if __name__ == "__main__":
    import uvicorn
    settings = Settings.from_env()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
