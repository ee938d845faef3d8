class RouteConflictError(ValueError):
    """A route cannot be merged into the routing tree."""


class DuplicateRouteError(RouteConflictError):
    """The same method, path and constraints were registered twice."""
