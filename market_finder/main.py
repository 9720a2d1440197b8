import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from market_finder.api.market import router as market_router
from market_finder.config import SETTINGS


logging.basicConfig(level=SETTINGS.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Market Finder API")

app.include_router(market_router)


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"ok": False, "error": "Server error"})


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
