"""
API module.
Contains the FastAPI application, routes, and the HTTP listener.
"""

from jobqueue.api.dependencies import AppServices
from jobqueue.api.main import create_app, run
from jobqueue.api.server import HttpListener

__all__ = ["AppServices", "HttpListener", "create_app", "run"]
