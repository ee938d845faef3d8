from importlib.metadata import version

from .errors import DuplicateRouteError, RouteConflictError
from .http import Request, Response
from .router import Router
from .types import ROUTER_SKIP, Signal

__all__ = [
    "ROUTER_SKIP",
    "DuplicateRouteError",
    "Request",
    "Response",
    "RouteConflictError",
    "Router",
    "Signal",
    "__version__",
]

__version__ = version("chainmux")
