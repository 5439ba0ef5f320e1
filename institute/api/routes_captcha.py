from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from ..captcha.service import CaptchaService, IssuedChallenge, UnknownChallenge
from ..contact.factory import get_captcha_service
from ..schemas import ChallengeAnswer, ChallengeRead, ChallengeRequest, ok

router = APIRouter(prefix="/api/captcha", tags=["captcha"])


def _to_read(issued: IssuedChallenge) -> ChallengeRead:
    return ChallengeRead(
        id=issued.id,
        type=issued.challenge.kind,
        prompt=issued.challenge.prompt,
        payload=issued.challenge.payload,
        expires_in=issued.expires_in,
    )


@router.post("/challenges", status_code=201)
def create_challenge(
    body: ChallengeRequest,
    captcha: CaptchaService = Depends(get_captcha_service),
) -> dict:
    """Issue a new challenge of the requested variant."""
    return ok(_to_read(captcha.issue(body.type, body.difficulty)))


@router.post("/challenges/{challenge_id}/verify")
def verify_challenge(
    challenge_id: str,
    body: ChallengeAnswer,
    captcha: CaptchaService = Depends(get_captcha_service),
) -> dict:
    """
    Check an answer.  On success the response carries a single-use
    ``captchaToken`` for the contact form; on failure a fresh challenge
    replaces the old one.
    """
    try:
        result = captcha.verify(challenge_id, body.response)
    except UnknownChallenge:
        raise HTTPException(status_code=404, detail="Challenge not found or expired.")

    if result.passed:
        return ok({"verified": True, "captchaToken": result.token}, "Verification successful")
    return {
        "success": False,
        "message": "Verification failed. Please try again.",
        "data": {"verified": False, "challenge": _to_read(result.next_challenge)},
    }
