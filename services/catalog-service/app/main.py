import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import media
from .db import Base, engine, init_schema
from .envelope import fail
from .errors import CatalogError, pydantic_errors
from .routes import auth, categories, product_requests, products

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

AUTO_CREATE_SCHEMA = os.getenv("AUTO_CREATE_SCHEMA", "false").lower() == "true"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Keep cold start lightweight for Lambda.
    Schema creation here is for local/dev only.
    """
    if AUTO_CREATE_SCHEMA:
        init_schema()
        Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="catalog-service", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # tighten in prod
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Serve uploaded images
if media.MEDIA_BACKEND == "local" and media.MEDIA_BASE_URL.startswith("/"):
    app.mount(media.MEDIA_BASE_URL, StaticFiles(directory=str(media.MEDIA_ROOT)), name="static")


@app.exception_handler(CatalogError)
async def catalog_error_handler(request: Request, exc: CatalogError):
    return fail(exc.message, exc.status_code, exc.errors)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return fail("The given data was invalid.", 422, pydantic_errors(exc))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    response = fail(str(exc.detail), exc.status_code)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return fail("Server error", 500)


app.include_router(auth.router)
app.include_router(products.router)
app.include_router(categories.router)

if categories.ENABLE_CATEGORY_ADMIN_ROUTES:
    app.include_router(categories.admin_router)

if product_requests.ENABLE_PRODUCT_REQUESTS:
    app.include_router(product_requests.router)


@app.get("/health")
def health():
    return {"ok": True}
