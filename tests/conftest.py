# Shared pytest fixtures
import httpx
import pytest
from fastapi.testclient import TestClient

from app import create_app
from config import Settings

REPORT_HTML = """
<html><body>
<table class="nav"><tr><td>Home</td><td>Contact</td></tr></table>
<table id="report">
  <tr>
    <th>Mandal</th><th>Gram Panchayat</th><th>Reporting Date</th>
    <th>Attendance Status</th><th>DSR Entry Time</th>
  </tr>
  <tr><td>Amberpet</td><td>Bagh</td><td>2024-01-01</td><td>Present</td><td>10:00</td></tr>
  <tr><td> </td><td></td><td></td><td></td><td></td></tr>
  <tr><td>Amberpet</td><td>Golnaka</td><td>2024-01-01</td><td>Absent</td><td></td></tr>
  <tr><td>Nampally</td><td>Mallepally</td><td>2024-01-02</td><td>Present</td><td>09:45</td></tr>
</table>
</body></html>
"""


@pytest.fixture()
def settings() -> Settings:
    return Settings(tg_base="https://portal.test/", tg_path="/PSPerformance/home", tg_timeout_ms=15000)


@pytest.fixture()
def upstream_requests() -> list:
    return []


@pytest.fixture()
def make_client(settings, upstream_requests):
    """Build a TestClient whose upstream portal is answered by ``handler``."""
    def _make(handler) -> TestClient:
        def recording_handler(request: httpx.Request):
            upstream_requests.append(request)
            return handler(request)
        app = create_app(settings, transport=httpx.MockTransport(recording_handler))
        return TestClient(app)
    return _make


@pytest.fixture()
def report_html() -> str:
    return REPORT_HTML
