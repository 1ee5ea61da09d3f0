"""Health, statistics and scheduler routes."""
from typing import Any, Dict

from litestar import Controller, Response, get
from litestar.exceptions import NotFoundException
from litestar.status_codes import HTTP_200_OK, HTTP_503_SERVICE_UNAVAILABLE

from grantflow.client import Client


class CoreController(Controller):
    path = "/"

    @get("/health")
    async def health(self, client: Client) -> Response[Dict[str, Any]]:
        report = client.health()
        status_code = HTTP_200_OK if report["healthy"] else HTTP_503_SERVICE_UNAVAILABLE
        return Response(content=report, status_code=status_code)

    @get("/stats")
    async def stats(self, client: Client) -> Dict[str, Any]:
        return {"counts": client.get_state_counts(), "last_24h": client.get_stats()}

    @get("/scheduler")
    async def scheduler(self, client: Client) -> Dict[str, Any]:
        status = client.get_scheduler_status()
        if status is None:
            raise NotFoundException("No schedule trigger layer attached")
        return status
