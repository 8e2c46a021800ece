import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from presale.api.observability import setup_observability
from presale.api.persistence_profile import validate_persistence_profile_guardrails
from presale.api.routers.proposals import router as proposal_workflow_router


@asynccontextmanager
async def _app_lifespan(_app: FastAPI):
    validate_persistence_profile_guardrails()
    yield


app = FastAPI(
    title="Motor Insurance Pre-Sale Workflow API",
    version="0.1.0",
    description=(
        "Drives a motor-insurance proposal from a selected quotation through customer, "
        "KYC, vehicle, liability, nomination and declaration stages to payment and "
        "policy issuance.\n\n"
        "Converted proposals are read-only; every write carries an optimistic version check."
    ),
    openapi_tags=[
        {
            "name": "Pre-Sale Proposal Workflow",
            "description": "Proposal persistence, stage navigation, gates and issuance.",
        },
        {
            "name": "Health",
            "description": "Liveness endpoint.",
        },
    ],
    lifespan=_app_lifespan,
)
setup_observability(app)

logger = logging.getLogger(__name__)

app.include_router(proposal_workflow_router)


@app.exception_handler(Exception)
async def unhandled_exception_to_problem_details(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception while serving request", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        media_type="application/problem+json",
        content={
            "type": "about:blank",
            "title": "Internal Server Error",
            "status": 500,
            "detail": "An unexpected error occurred.",
            "instance": str(request.url.path),
        },
    )


@app.get("/health", tags=["Health"], summary="Liveness Check")
def health() -> dict[str, str]:
    return {"status": "ok"}
