"""
HTTP API for DuoChat.
"""

import uvicorn

from .routes_base import create_app


def run(services, host: str = "0.0.0.0", api_port: int = 8766):
    """
    Run the FastAPI application alone with Uvicorn.

    Args:
        services: Component graph to serve
        host (str): Interface to bind
        api_port (int): Port for the api
    """
    uvicorn.run(create_app(services), host=host, port=api_port)


__all__ = ['create_app', 'run']
