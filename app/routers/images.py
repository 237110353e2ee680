"""Image generation router.

Endpoints:
- POST /api/generate-image -> proxy a text-to-image request, returns inline base64
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from app.exceptions import ImageGenerationError
from app.models import GeneratedImageResponse, GenerateImageRequest
from app.services import image_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/generate-image", response_model=GeneratedImageResponse)
async def generate_image(body: GenerateImageRequest) -> dict:
    """400 on a missing prompt, 502 when the upstream image API fails."""
    if not (body.prompt or "").strip():
        raise HTTPException(status_code=400, detail="Missing prompt")
    try:
        return await image_service.generate_image(body.prompt, body.anchor_image)
    except ImageGenerationError as exc:
        logger.warning("Image generation failed: %s", exc.message)
        raise HTTPException(status_code=502, detail=exc.message) from exc
