from fastapi import APIRouter, status

from app.schemas.health import HealthCheck

router = APIRouter()


@router.get(
    "/health",
    tags=["Health"],
    response_model=HealthCheck,
    status_code=status.HTTP_200_OK,
)
def get_health() -> HealthCheck:
    return HealthCheck(status="oke")
