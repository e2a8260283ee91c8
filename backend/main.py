# backend/main.py
import logging

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Load environment variables before the settings are read
load_dotenv()

from config import settings
from database import init_db
from utils.errors import InventoryError
from utils.logging_config import configure_logging

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Router imports
from routes.movements import router as movements_router
from routes.products import router as products_router
from routes.stats import router as stats_router

# Initialisation
init_db()

app = FastAPI(title="Inventory Ledger API", version="1.0.0")

# CORS Configuration
origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
if settings.FRONTEND_URL and settings.FRONTEND_URL not in origins:
    origins.append(settings.FRONTEND_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Domain errors carry their own status code
@app.exception_handler(InventoryError)
async def inventory_error_handler(request: Request, exc: InventoryError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Malformed payloads are client errors like any other invalid input
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info("%s %s validation failed", request.method, request.url.path)
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid input", "code": "INVALID_INPUT", "errors": jsonable_encoder(exc.errors())},
    )


# Router registration
app.include_router(movements_router)
app.include_router(products_router)
app.include_router(stats_router)


@app.get("/")
def read_root():
    return {"message": "Inventory Ledger API is running"}
