from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from chirp.core.config import settings
from chirp.core.logger import logger
from chirp.database.connection import ClientFactory, close_mongo_connection, connect_to_mongo, get_database
from chirp.repositories.message_repository import MessageRepository
from chirp.routers.chat import router as chat_router
from chirp.routers.conversations import router as conversations_router
from chirp.routers.presence import router as presence_router
from chirp.utils.errors import ChatError, StorageError
from chirp.utils.notifications import RealtimeDispatcher
from chirp.utils.realtime_bus import create_bus
from chirp.utils.responses import GENERIC_ERROR, format_error_response
from chirp.utils.websocket_manager import PresenceRegistry


@asynccontextmanager
async def lifespan(app: FastAPI):

    await connect_to_mongo(app.state.client_factory)
    await MessageRepository(get_database()).ensure_indexes()
    app.state.presence = PresenceRegistry()
    app.state.bus = create_bus(settings.REDIS_URL)
    app.state.dispatcher = RealtimeDispatcher(app.state.presence, app.state.bus)
    logger.info("chirp messaging started")
    try:
        yield
    finally:
        await app.state.bus.close()
        app.state.presence.clear()
        await close_mongo_connection()
        logger.info("chirp messaging stopped")


async def chat_error_handler(request: Request, exc: ChatError):
    if isinstance(exc, StorageError):
        return JSONResponse(status_code=exc.status_code, content=format_error_response(exc, exc.status_code, GENERIC_ERROR))
    return JSONResponse(status_code=exc.status_code, content=format_error_response(exc, exc.status_code, exc.detail))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # malformed bodies are client errors like missing fields
    return JSONResponse(status_code=400, content=format_error_response(exc, 400, "Invalid request body"))


async def storage_exception_handler(request: Request, exc: PyMongoError):
    logger.exception("storage failure on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=format_error_response(StorageError(GENERIC_ERROR), 500, GENERIC_ERROR))


async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=format_error_response(exc, 500, GENERIC_ERROR))


def create_app(client_factory: ClientFactory = AsyncIOMotorClient) -> FastAPI:
    app = FastAPI(title="Chirp Messaging", version="0.1.0", lifespan=lifespan)
    app.state.client_factory = client_factory

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ChatError, chat_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PyMongoError, storage_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(conversations_router)
    app.include_router(chat_router)
    app.include_router(presence_router)

    @app.get("/", tags=["root"], summary="Health check")
    async def root():
        return {"status": "ok", "service": "chirp-messaging"}

    return app


app = create_app()
