from typing import Any, Dict, List

from fastapi import APIRouter, Request

from ..core import config
from ..core.utils import now_iso

router = APIRouter(tags=["meta"])


def _split(value: str) -> List[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


def _without_empty(properties: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in properties.items() if value}


def build_manifest() -> Dict[str, Any]:
    """Farcaster Mini-App manifest; empty fields are omitted."""
    return {
        "accountAssociation": {
            "header": config.FARCASTER_HEADER,
            "payload": config.FARCASTER_PAYLOAD,
            "signature": config.FARCASTER_SIGNATURE,
        },
        "frame": _without_empty(
            {
                "version": "1",
                "name": config.APP_NAME,
                "iconUrl": config.APP_ICON_URL,
                "homeUrl": config.APP_URL,
                "imageUrl": config.APP_IMAGE_URL,
                "buttonTitle": config.APP_BUTTON_TITLE,
                "splashImageUrl": config.APP_SPLASH_IMAGE_URL,
                "splashBackgroundColor": config.APP_SPLASH_BACKGROUND_COLOR,
                "webhookUrl": f"{config.APP_URL}/api/webhooks",
                "subtitle": config.APP_SUBTITLE,
                "description": config.APP_DESCRIPTION,
                "screenshotUrls": _split(config.APP_SCREENSHOT_URLS),
                "primaryCategory": config.APP_PRIMARY_CATEGORY,
                "tags": _split(config.APP_KEYWORDS),
                "heroImageUrl": config.APP_IMAGE_URL,
                "tagline": config.APP_TAGLINE,
                "ogTitle": f"{config.APP_NAME} - {config.APP_SUBTITLE}",
                "ogDescription": config.APP_DESCRIPTION,
                "ogImageUrl": config.APP_IMAGE_URL,
            }
        ),
    }


@router.get("/health")
@router.get("/api/health")
def health(request: Request):
    return {
        "status": "ok",
        "timestamp": now_iso(),
        "sseConnections": request.app.state.broker.connection_count,
    }


@router.get("/api/manifest.json")
@router.get("/.well-known/farcaster.json")
def manifest():
    return build_manifest()
