# main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.logging_config import configure_logging
from middleware.request_logging import RequestLoggingMiddleware
from routers.crypto_routes import router as crypto_router

configure_logging()

app = FastAPI(title="Crypto Widget Data Engine")

# The widget renderer is served from a local dev server or file://
origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "null",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# Include routers
app.include_router(crypto_router, prefix="/api/crypto")


@app.get("/health")
async def health():
    return {"status": "ok"}
