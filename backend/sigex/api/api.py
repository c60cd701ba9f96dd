from fastapi import APIRouter

from .endpoints import certificates, expedientes, oficinas, signatures

api_router = APIRouter()

api_router.include_router(oficinas.router, prefix="/oficinas", tags=["oficinas"])
api_router.include_router(expedientes.router, prefix="/expedientes", tags=["expedientes"])
api_router.include_router(certificates.router, prefix="/certificates", tags=["certificates"])
api_router.include_router(signatures.router, prefix="/signatures", tags=["signatures"])
