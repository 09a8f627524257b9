# cartsync/main.py
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from cartsync.api import create_app
from cartsync.data.database import init_db
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Initializing database...")
    init_db()
    logger.info("Database tables ready")
    yield


app = create_app(lifespan=lifespan)

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
