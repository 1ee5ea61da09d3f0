"""Litestar application factory for the grantflow status API."""
from litestar import Litestar
from litestar.di import Provide
from litestar.datastructures import State

from grantflow.client import Client

from .controllers.core import CoreController
from .controllers.jobs import JobsController


async def get_client(state: State) -> Client:
    return state.client


def create_dashboard_app(client: Client, debug: bool = False) -> Litestar:
    """Create the Litestar application for the status API.

    Args:
        client: A grantflow client instance. Attach a schedule trigger layer
            to ``client.scheduler`` to expose its status as well.
        debug: Passed through to Litestar.

    Returns:
        A Litestar application.
    """
    return Litestar(
        route_handlers=[CoreController, JobsController],
        state=State({"client": client}),
        dependencies={"client": Provide(get_client)},
        debug=debug,
    )
