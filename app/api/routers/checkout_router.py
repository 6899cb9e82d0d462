"""
app/api/routers/checkout_router.py

Checkout session endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.dependencies import get_session_engine
from app.checkout.session_engine import CheckoutSessionEngine
from app.schemas.checkout import (
    CheckoutDeeplinkResponse,
    CheckoutSessionCreateRequest,
    CheckoutSessionInfoRequest,
    CheckoutSessionResponse,
    MissingFieldResponse,
)

router = APIRouter(prefix="/checkout", tags=["checkout"])


def _session_response(engine: CheckoutSessionEngine, session_id: str) -> CheckoutSessionResponse:
    session = engine.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found.")
    return CheckoutSessionResponse(**session.to_dict(), progress=engine.calculate_progress(session_id))


@router.post("/sessions", response_model=CheckoutSessionResponse, status_code=status.HTTP_201_CREATED)
def create_session(
    request: CheckoutSessionCreateRequest,
    engine: CheckoutSessionEngine = Depends(get_session_engine),
) -> CheckoutSessionResponse:
    session_id = engine.create_session(request.user_id, request.product_id, category=request.category)
    return _session_response(engine, session_id)


@router.get("/sessions/{session_id}", response_model=CheckoutSessionResponse)
def get_session(
    session_id: str,
    engine: CheckoutSessionEngine = Depends(get_session_engine),
) -> CheckoutSessionResponse:
    return _session_response(engine, session_id)


@router.patch("/sessions/{session_id}/info", response_model=CheckoutSessionResponse)
def update_session_info(
    session_id: str,
    request: CheckoutSessionInfoRequest,
    engine: CheckoutSessionEngine = Depends(get_session_engine),
) -> CheckoutSessionResponse:
    """
    Merge user information into the session and re-evaluate readiness.
    """

    if not engine.update_session_info(session_id, request.info):
        if engine.get_session(session_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found.")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Session no longer accepts updates.")
    return _session_response(engine, session_id)


@router.get("/sessions/{session_id}/missing-fields", response_model=list[MissingFieldResponse])
def get_missing_fields(
    session_id: str,
    engine: CheckoutSessionEngine = Depends(get_session_engine),
) -> list[MissingFieldResponse]:
    if engine.get_session(session_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found.")
    return [
        MissingFieldResponse(name=field.name, type=field.type, label=field.label)
        for field in engine.get_missing_required_fields(session_id)
    ]


@router.post("/sessions/{session_id}/deeplink", response_model=CheckoutDeeplinkResponse)
def generate_deeplink(
    session_id: str,
    engine: CheckoutSessionEngine = Depends(get_session_engine),
) -> CheckoutDeeplinkResponse:
    if engine.get_session(session_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found.")
    return CheckoutDeeplinkResponse(**engine.generate_deeplink(session_id))


@router.post("/sessions/{session_id}/complete", response_model=CheckoutSessionResponse)
def complete_checkout(
    session_id: str,
    engine: CheckoutSessionEngine = Depends(get_session_engine),
) -> CheckoutSessionResponse:
    if engine.get_session(session_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found.")
    if not engine.complete_checkout(session_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Session is not ready: required checkout information is missing.",
        )
    return _session_response(engine, session_id)
