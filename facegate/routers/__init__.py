import logging

from fastapi import APIRouter


def build_router() -> APIRouter:
    router = APIRouter()
    log = logging.getLogger("facegate.routers")

    from .face_recognition import router as face_router
    router.include_router(face_router)
    log.info("Loaded router: face_recognition")

    from .hikvision import router as hikvision_router
    router.include_router(hikvision_router)
    log.info("Loaded router: hikvision")

    from .health import router as health_router
    router.include_router(health_router)
    log.info("Loaded router: health")

    return router


# Export module-level router so facegate.main can import it
router = build_router()
