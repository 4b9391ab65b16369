from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

# Configure logging FIRST
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from aipm.config import get_settings
from aipm.core.enums import GlobalRole
from aipm.db import Base, engine, SessionLocal
from aipm.errors import AIpmError, ErrorKind
from aipm.models import User
from aipm.routers import auth, chat, documents, members, projects, users
from aipm.security import get_password_hash
from aipm.services.completion import CompletionService
from aipm.services.conversations import ConversationManager

settings = get_settings()

app = FastAPI(title="FunCommute AI-PM API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AIpmError)
async def aipm_error_handler(request: Request, exc: AIpmError):
    if exc.status_code >= 500:
        logger.error(f"{exc.kind.value} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error on {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": ErrorKind.VALIDATION_ERROR.value,
            "message": "Request validation failed",
            "details": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": ErrorKind.DATABASE_ERROR.value, "message": "A database error occurred"},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": ErrorKind.INTERNAL_ERROR.value, "message": "Internal server error"},
    )


def seed_admin():
    """Create the bootstrap administrator if configured and missing."""
    if not settings.bootstrap_admin_email or not settings.bootstrap_admin_password:
        return
    session: Session = SessionLocal()
    try:
        existing = session.query(User).filter(User.email == settings.bootstrap_admin_email).first()
        if not existing:
            session.add(
                User(
                    email=settings.bootstrap_admin_email,
                    name=settings.bootstrap_admin_name,
                    password_hash=get_password_hash(settings.bootstrap_admin_password),
                    role=GlobalRole.ADMIN.value,
                    is_active=True,
                )
            )
            session.commit()
            logger.info(f"Bootstrap admin {settings.bootstrap_admin_email} created")
    except SQLAlchemyError as e:
        logger.error(f"Error seeding bootstrap admin: {e}")
        session.rollback()
    finally:
        session.close()


app.include_router(auth.router, prefix="/api/v1")
app.include_router(users.router, prefix="/api/v1")
app.include_router(projects.router, prefix="/api/v1")
app.include_router(members.router, prefix="/api/v1")
app.include_router(documents.router, prefix="/api/v1")
app.include_router(chat.router, prefix="/api/v1")


@app.on_event("startup")
def startup_event():
    """Create tables, seed the admin and build the per-process services."""
    logger.info("Startup event triggered")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created/verified")
    seed_admin()
    app.state.conversation_manager = ConversationManager(
        max_messages=settings.max_messages_per_conversation,
        max_message_length=settings.max_message_length,
    )
    app.state.completion_service = CompletionService(settings)
    app.state.conversation_manager.start_autosave(SessionLocal, settings.conversation_autosave_seconds)
    logger.info("Startup event completed - server ready")


@app.on_event("shutdown")
def shutdown_event():
    manager = getattr(app.state, "conversation_manager", None)
    if manager is not None:
        manager.stop_autosave()
        manager.flush_all(SessionLocal)
    logger.info("Shutdown complete")


@app.get("/health")
def health():
    return {"status": "ok"}
