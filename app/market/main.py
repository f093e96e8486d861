from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
import logging
from sqlalchemy import text
from sqlalchemy.orm import Session

from market.config import settings

# Настраиваем логгер
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
)
logger = logging.getLogger(__name__)

from market.routers import accounts, users, products, favorites, orders, chats
from market.database import engine, Base, get_db
from market import auth, models  # noqa: F401  models registers the tables on Base
from market.exceptions import register_exception_handlers

# Create FastAPI app
app = FastAPI(
    title="Campus Market API",
    description="Campus secondhand marketplace: listings, favorites, orders and chat",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Настройка rate limiting
limiter = auth.setup_limiter(app)

register_exception_handlers(app)

# Create database tables
try:
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")
except Exception as e:
    logger.error(f"Failed to create database tables: {str(e)}")
    logger.warning("API will continue to run, but database operations may fail")

# Include routers
app.include_router(accounts.router, prefix=settings.API_PREFIX, tags=["auth"])
app.include_router(users.router, prefix=settings.API_PREFIX, tags=["users"])
app.include_router(products.router, prefix=settings.API_PREFIX, tags=["products"])
app.include_router(favorites.router, prefix=settings.API_PREFIX, tags=["favorites"])
app.include_router(orders.router, prefix=settings.API_PREFIX, tags=["orders"])
app.include_router(chats.router, prefix=settings.API_PREFIX, tags=["chats"])

@app.get("/")
def read_root():
    return {
        "status": "ok",
        "message": "Campus Market API is running",
        "version": "1.0.0"
    }

@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    db_status = "connected"
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check database ping failed: {str(e)}")
        db_status = "disconnected"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status
    }

if __name__ == "__main__":
    uvicorn.run(
        "market.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
