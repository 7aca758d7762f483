from typing import Any, Callable, Optional, Sequence

from fastapi import APIRouter, Depends, status

from directchat.api.common.decorators import handle_route_errors, log_route_call

Endpoint = Callable[..., Any]

# Every messaging route needs a session and may hit a transient backend outage
COMMON_RESPONSES: dict[int | str, dict[str, Any]] = {
    status.HTTP_401_UNAUTHORIZED: {"description": "Missing or invalid session"},
    status.HTTP_503_SERVICE_UNAVAILABLE: {
        "description": "Backend temporarily unavailable; retry after the given delay"
    },
}


class BaseRouter:
    """Wraps an APIRouter so each endpoint gets route logging and error mapping."""

    def __init__(
        self,
        router: APIRouter,
        default_tags: Optional[Sequence[str]] = None,
        default_dependencies: Optional[Sequence[Depends]] = None,
    ):
        self.router = router
        self.default_tags = list(default_tags or [])
        self.default_dependencies = list(default_dependencies or [])

    def _wrap(self, endpoint: Endpoint) -> Endpoint:
        return log_route_call(handle_route_errors(endpoint))

    def add_api_route(
        self,
        path: str,
        endpoint: Endpoint,
        *,
        methods: Sequence[str],
        tags: Optional[Sequence[str]] = None,
        dependencies: Optional[Sequence[Depends]] = None,
        responses: Optional[dict[int | str, dict[str, Any]]] = None,
        wrap: bool = True,
        **kwargs: Any,
    ) -> None:
        self.router.add_api_route(
            path,
            self._wrap(endpoint) if wrap else endpoint,
            methods=list(methods),
            tags=sorted({*self.default_tags, *(tags or [])}),
            dependencies=[*self.default_dependencies, *(dependencies or [])],
            responses={**COMMON_RESPONSES, **(responses or {})},
            **kwargs,
        )

    def route(self, path: str, methods: Sequence[str], **kwargs: Any):
        def decorator(endpoint: Endpoint) -> Endpoint:
            self.add_api_route(path, endpoint, methods=methods, **kwargs)
            return endpoint

        return decorator

    def get(self, path: str, **kwargs: Any):
        return self.route(path, ["GET"], **kwargs)

    def post(self, path: str, **kwargs: Any):
        return self.route(path, ["POST"], **kwargs)
