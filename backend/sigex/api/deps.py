from typing import Optional

from fastapi import Header, HTTPException, Request

from ..core.logging_config import clear_expediente_context, set_expediente_context
from ..services.container import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services are not initialised")
    return services


def get_current_usuario(x_usuario: Optional[str] = Header(None)) -> str:
    """Acting user, passed by the gateway in the X-Usuario header"""
    if not x_usuario:
        raise HTTPException(status_code=401, detail="X-Usuario header is required")
    clear_expediente_context()
    set_expediente_context(user_id=x_usuario)
    return x_usuario
