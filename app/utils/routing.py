from fastapi.routing import APIRoute


class AnyMethodRoute(APIRoute):
    """Route that matches every HTTP method.

    ``APIRoute`` falls back to ``GET`` when no methods are given, and a route
    that matches the path but not the method answers 405. Registry calls and
    the not-found fallback are method agnostic, so the method set is cleared
    after the route is built.
    """

    def __init__(self, path: str, endpoint, **kwargs):
        super().__init__(path, endpoint, **kwargs)
        self.methods = None
