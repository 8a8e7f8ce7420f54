import logging
import os

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)

TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID", "")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN", "")
TWILIO_WHATSAPP_FROM = os.getenv("TWILIO_WHATSAPP_FROM", "")
SHOPKEEPER_PHONE = os.getenv("SHOPKEEPER_PHONE", "")
TWILIO_API = "https://api.twilio.com/2010-04-01"

app = FastAPI(title="QuickGrocery Notification Relay")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class NotifyBody(BaseModel):
    orderId: str
    message: str
    total: float


def send_whatsapp(body: str) -> dict:
    """Create a Twilio message to the shopkeeper; returns the provider response."""
    response = httpx.post(
        f"{TWILIO_API}/Accounts/{TWILIO_ACCOUNT_SID}/Messages.json",
        data={"From": TWILIO_WHATSAPP_FROM, "To": SHOPKEEPER_PHONE, "Body": body},
        auth=(TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN),
        timeout=15,
    )
    response.raise_for_status()
    return response.json()


def provider_error(response: httpx.Response) -> str:
    try:
        detail = response.json().get("message")
    except ValueError:
        detail = None
    return f"HTTP {response.status_code}: {detail}" if detail else f"HTTP {response.status_code}"


def failure_response(error: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Failed to send WhatsApp notification",
            "error": error,
        },
    )


@app.post("/notify")
def notify(body: NotifyBody):
    try:
        sent = send_whatsapp(body.message)
    except httpx.HTTPStatusError as e:
        logger.error("Error sending WhatsApp notification for order %s: %s", body.orderId, e)
        return failure_response(provider_error(e.response))
    except httpx.HTTPError as e:
        logger.error("Error sending WhatsApp notification for order %s: %s", body.orderId, e)
        return failure_response(type(e).__name__)

    logger.info(
        "New order %s, total ₹%s, message sid %s (%s)",
        body.orderId, body.total, sent.get("sid"), sent.get("status"),
    )
    return {
        "success": True,
        "message": "WhatsApp notification sent successfully",
        "messageSid": sent.get("sid"),
    }


@app.get("/")
def root():
    return {
        "status": "running",
        "message": "QuickGrocery Backend API",
        "endpoints": [
            {"method": "POST", "path": "/notify", "description": "Send order notification"},
        ],
    }


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO)
    port = int(os.getenv("PORT", 5000))
    uvicorn.run(app, host="0.0.0.0", port=port)
