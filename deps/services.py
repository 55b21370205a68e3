from fastapi import Depends, Request

from app.container import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def admission(name: str):
    """Dependency running the named AdmissionGuard from the app's services."""

    def _guard(request: Request, services: Services = Depends(get_services)) -> None:
        services.guards[name](request)

    _guard.__name__ = f"admission_{name}"
    return _guard
