from fastapi import Header, HTTPException, Request, status

from app.services.service_container import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def require_acting_user_id(x_user_id: str | None = Header(default=None)) -> str:
    acting_user_id = (x_user_id or "").strip()
    if not acting_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id header is required.",
        )
    return acting_user_id
