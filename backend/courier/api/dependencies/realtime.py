"""
Access to the process-wide realtime components created in the app lifespan.

Both dependencies accept any HTTP connection, so they resolve for REST
handlers and for the websocket endpoint alike.
"""

from starlette.requests import HTTPConnection

from ...services.messaging.fanout import FanoutRouter
from ...services.messaging.registry import ConnectionRegistry


def get_connection_registry(connection: HTTPConnection) -> ConnectionRegistry:
    registry: ConnectionRegistry = connection.app.state.connection_registry
    return registry


def get_fanout_router(connection: HTTPConnection) -> FanoutRouter:
    router: FanoutRouter = connection.app.state.fanout_router
    return router
