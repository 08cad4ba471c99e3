import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from app.errors import TokenDataUnavailableError
from app.orchestration.tokens import TokenOrchestrator
from app.schemas.tokens import ErrorResponse, TokenResponseItem

logger = logging.getLogger(__name__)

router = APIRouter()

UNAVAILABLE_MESSAGE = "Unable to retrieve token data from any source"
INTERNAL_ERROR_MESSAGE = "Internal server error"


def get_orchestrator(request: Request) -> TokenOrchestrator:
    return request.app.state.orchestrator


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.get(
    "/api/tokens",
    response_model=list[TokenResponseItem],
    responses={status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse}},
)
async def get_tokens(orchestrator: TokenOrchestrator = Depends(get_orchestrator)):
    try:
        return await orchestrator.get_tokens()
    except TokenDataUnavailableError:
        logger.error("Token data unavailable from cache, provider and durable store")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"message": UNAVAILABLE_MESSAGE},
        )
    except Exception:
        logger.exception("Token request failed")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"message": INTERNAL_ERROR_MESSAGE},
        )
