from fastapi import APIRouter, Request


router = APIRouter()


@router.get("/health", tags=["Health"])
def read_health(request: Request) -> dict[str, str]:
    settings = request.app.state.settings
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
        "trash_root": str(request.app.state.trash_service.trash_root),
    }
