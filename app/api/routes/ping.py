from fastapi import APIRouter

from app.dependencies.auth import CurrentUser

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health probe")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/whoami", summary="Echo the authenticated caller")
async def whoami(user: CurrentUser) -> dict[str, str]:
    return {"status": "ok", "user": user.username, "role": user.primary_role.value}
