"""
Payment webhook routes

The raw request body is handed to the processor unchanged; the signature
is computed over those exact bytes.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from web_api.dependencies import ServiceContainer, get_services

router = APIRouter()


@router.post("/paystack")
async def paystack_webhook(
    request: Request,
    x_paystack_signature: Optional[str] = Header(None, alias="x-paystack-signature"),
    services: ServiceContainer = Depends(get_services),
):
    """Handle Paystack events; a 400 makes Paystack retry the delivery"""
    body = await request.body()

    if not await services.webhooks.process(body, x_paystack_signature):
        raise HTTPException(status_code=400, detail="Webhook rejected")

    return {"status": "ok"}
