"""FastAPI dependencies for lesson governance.

Provides dependency injection for:
- Governance engine
- Playback policy
- Error handlers
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from src.config.settings import get_settings

from .errors import DeniedError, GovernanceError
from .policy import PlaybackPolicy
from .service import ProgressGovernanceEngine


async def get_governance_engine(request: Request) -> ProgressGovernanceEngine:
    """Get governance engine from app state.

    Args:
        request: FastAPI request

    Returns:
        ProgressGovernanceEngine instance
    """
    app_state = request.app.state
    if not hasattr(app_state, "governance_engine") or not app_state.governance_engine:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Governance service not available",
        )
    return app_state.governance_engine


def get_playback_policy() -> PlaybackPolicy:
    """Playback policy built from the current settings."""
    return PlaybackPolicy.from_settings(get_settings())


# Type aliases for dependency injection
GovernanceEngineDep = Annotated[
    ProgressGovernanceEngine, Depends(get_governance_engine)
]
PlaybackPolicyDep = Annotated[PlaybackPolicy, Depends(get_playback_policy)]


def handle_governance_error(error: GovernanceError) -> HTTPException:
    """Convert governance errors to HTTP exceptions.

    Denials carry their reason code alongside the message so clients can
    render the specific remediation.

    Args:
        error: Governance error

    Returns:
        HTTPException with appropriate status code
    """
    status_map = {
        "validation_error": status.HTTP_400_BAD_REQUEST,
        "not_found": status.HTTP_404_NOT_FOUND,
        "denied": status.HTTP_403_FORBIDDEN,
        "forbidden": status.HTTP_403_FORBIDDEN,
        "conflict": status.HTTP_409_CONFLICT,
    }

    status_code = status_map.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    detail: str | dict = error.message
    if isinstance(error, DeniedError):
        detail = {"reason": error.reason.value, "message": error.message}

    return HTTPException(status_code=status_code, detail=detail)
