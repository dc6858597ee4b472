# SubVault: HTTP API

from .main import create_app, start_api_server
from .security import ApiSession

__all__ = ["create_app", "start_api_server", "ApiSession"]
