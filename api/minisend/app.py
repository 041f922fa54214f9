"""
FastAPI service behind the Minisend USDC off-ramp (USDC on Base -> KES / NGN)
- Orders are created with PayCrest and tracked in Supabase alongside Pretium, Transak and M-Pesa payouts
- Order status converges from three channels: signed webhooks, client/server polling and SSE push
- Includes: rates, account verification, order creation, status + polling, webhooks, SSE stream,
  user order history, admin dashboard (JWT session) and the Farcaster Mini-App manifest

Run:
  pip install -e .
  export SUPABASE_URL=... SUPABASE_SERVICE_ROLE_KEY=... PAYCREST_API_KEY=... PAYCREST_API_SECRET=...
  PORT=8000 uvicorn minisend.app:app --reload

Set the PORT/HOST environment variables to override the defaults when running locally.
"""

import logging
import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core import config
from .core.broker import EventBroker
from .routers import callbacks, dashboard, meta, orders, paycrest, pretium

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

docs_url = "/docs"
redoc_url = "/redoc"

if config.APP_ENV == "prod":
    docs_url = None
    redoc_url = None

app = FastAPI(title="Minisend Off-Ramp API", version="1.0.0", docs_url=docs_url, redoc_url=redoc_url)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.state.broker = EventBroker(queue_size=config.SSE_QUEUE_SIZE)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    return JSONResponse(status_code=400, content={"success": False, "error": message})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception on %s", request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})


app.include_router(meta.router)
app.include_router(paycrest.router)
app.include_router(pretium.router)
app.include_router(callbacks.router)
app.include_router(orders.router)
app.include_router(dashboard.router)

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    host = os.getenv("HOST", "0.0.0.0")
    uvicorn.run("minisend.app:app", host=host, port=port, reload=True)
