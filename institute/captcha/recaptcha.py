from __future__ import annotations

import logging

import httpx

logger = logging.getLogger("institute.captcha")


def verify_recaptcha(
    token: str,
    remote_ip: str,
    *,
    secret: str,
    url: str,
    timeout: float = 10.0,
) -> dict:
    """
    Ask Google's siteverify endpoint about a reCAPTCHA token.
    Returns the decoded JSON verdict; raises httpx.HTTPError on transport
    failure or a non-2xx answer.
    """
    with httpx.Client(timeout=timeout) as client:
        resp = client.post(url, data={"secret": secret, "response": token, "remoteip": remote_ip})
        resp.raise_for_status()
        result = resp.json()
    if not result.get("success"):
        logger.info("reCAPTCHA rejected token: %s", result.get("error-codes"))
    return result
