from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ...models import Oficina
from ...schemas.expediente import OficinaCreateRequest
from ...services.container import ServiceContainer
from ..deps import get_current_usuario, get_services

router = APIRouter()


@router.post("", response_model=Oficina, status_code=201)
async def create_oficina(
    body: OficinaCreateRequest,
    usuario: str = Depends(get_current_usuario),
    services: ServiceContainer = Depends(get_services)
):
    return await services.workflow.crear_oficina(**body.model_dump())


@router.get("", response_model=List[Oficina])
async def list_oficinas(
    activa: Optional[bool] = Query(None),
    services: ServiceContainer = Depends(get_services)
):
    return await services.workflow.list_oficinas(activa)


@router.get("/{oficina_id}", response_model=Oficina)
async def get_oficina(
    oficina_id: str,
    services: ServiceContainer = Depends(get_services)
):
    return await services.workflow.get_oficina(oficina_id)
