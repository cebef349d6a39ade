from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from loguru import logger
from starlette import status
from starlette.responses import RedirectResponse

from lnbridge.lightning.router import router as ln_router
from lnbridge.lightning.service import initialize_ln_client, register_invoice_listener
from lnbridge.logging import configure_logger

# start server with "uvicorn lnbridge.main:app --reload"

configure_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # setup
    client = initialize_ln_client()
    listener = register_invoice_listener()
    logger.success(f"{client.get_implementation_name()} client ready")

    yield

    # cleanup
    listener.cancel()


app = FastAPI(lifespan=lifespan)
app.include_router(ln_router)


@app.get("/")
def index(req: Request):
    return RedirectResponse(
        req.url_for("swagger_ui_html"), status_code=status.HTTP_307_TEMPORARY_REDIRECT
    )
