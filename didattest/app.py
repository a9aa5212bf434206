import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .errors import install_exception_handlers
from .middleware import RequestContextMiddleware
from .middleware.rate_limit import RateLimitMiddleware
from .routes_health import router as health_router
from .routes_verify import router as verify_router


load_dotenv()

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger("didattest")

app = FastAPI(title="didattest API", version=__version__)

# CORS: allowed web origins via env (fallback to local dev ports)
raw_origins = os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:3000,http://localhost:8080")
origins = [o.strip() for o in raw_origins.split(",") if o.strip()] or ["*"]
allow_credentials = True if origins and origins != ["*"] else False

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)

# Request context and timing
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RateLimitMiddleware)

install_exception_handlers(app)

app.include_router(health_router)
app.include_router(verify_router)
