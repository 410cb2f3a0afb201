import logging
import re
from typing import Any, Dict, Optional

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from config import Settings, check_html_parser, configure_logging, load_settings
from report_scrape import (
    DETAILS_LIMIT,
    InvalidInput,
    PortalScraper,
    ReportError,
    UpstreamError,
    normalize_row,
    number_rows,
    parse_html_to_rows,
)

logger = logging.getLogger(__name__)


def extract_digits(uid) -> str:
    """Keep only the ASCII digits of ``uid``, in order."""
    return re.sub(r"\D", "", str(uid or ""), flags=re.ASCII)


def _reject_constant(name: str):
    # NaN / Infinity cannot be rendered back as JSON
    raise ValueError(f"Non-standard JSON constant {name}")


class ReportService:
    """Turns one ``uid`` into one upstream call and one JSON report."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.scraper = PortalScraper(
            settings.tg_base,
            settings.tg_path,
            timeout=settings.timeout_seconds,
            transport=transport,
        )

    async def build_report(self, uid: str) -> Dict[str, Any]:
        numeric_id = extract_digits((uid or "").strip())
        if not numeric_id:
            raise InvalidInput()

        # the portal expects "<digits>,2"
        param1 = f"{numeric_id},2"
        response = await self.scraper.fetch(param1)

        content_type = response.headers.get("content-type", "").lower()
        if "json" in content_type:
            return self._from_json(numeric_id, response)

        parsed_rows = parse_html_to_rows(response.text, parser=self.settings.html_parser)
        final_rows = number_rows([normalize_row(r) for r in parsed_rows])
        return {
            "uid": numeric_id,
            "external_url": self.scraper.url_for(param1),
            "count": len(final_rows),
            "rows": final_rows,
        }

    def _from_json(self, numeric_id: str, response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json(parse_constant=_reject_constant)
        except ValueError:
            raise UpstreamError(response.text[:DETAILS_LIMIT], status_code=502)

        if isinstance(data, list):
            final_rows = number_rows(data)
        elif isinstance(data, dict) and isinstance(data.get("rows"), list):
            final_rows = number_rows(data["rows"])
        else:
            return {"uid": numeric_id, "raw": data}
        return {"uid": numeric_id, "count": len(final_rows), "rows": final_rows}


def create_app(settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    if settings is None:
        settings = load_settings()
    check_html_parser(settings.html_parser)

    app = FastAPI(title="e-Panchayath report backend")
    app.state.settings = settings
    service = ReportService(settings, transport=transport)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return "e-Panchayath backend running"

    @app.get("/api/report")
    async def report(uid: str = ""):
        try:
            return await service.build_report(uid)
        except ReportError as e:
            logger.error("❌ Error in /api/report: %s (status %s)", e, e.status_code)
            return JSONResponse(status_code=e.status_code, content=e.to_dict())
        except Exception as e:
            logger.exception("❌ Unexpected error in /api/report")
            return JSONResponse(status_code=500, content={"error": "Server error", "details": str(e)})

    return app


def main():
    settings = load_settings()
    configure_logging(settings.log_level)
    app = create_app(settings)
    logger.info("🚀 Server listening on port %s, upstream %s", settings.port, settings.external_url)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
