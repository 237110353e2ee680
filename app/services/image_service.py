"""Image generation service: text-to-image proxy returning inline base64.

Backs both the ``generateImage`` tool and ``POST /api/generate-image``.
"""

from __future__ import annotations

import base64
import logging
import time
from urllib.parse import quote

import httpx

from app.config import get_settings
from app.exceptions import ImageGenerationError

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/jpeg"
ANCHOR_SUFFIX = ". Match the style/composition of the provided anchor image."
# Some upstreams reject requests without a browser-like user agent
USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def build_image_url(prompt: str, seed: int, anchor_image: str | None = None) -> str:
    """Return the upstream URL for *prompt* (decorated when an anchor is given)."""
    settings = get_settings()
    decorated = f"{prompt}{ANCHOR_SUFFIX}" if anchor_image else prompt
    size = settings.image_size
    return (
        f"{settings.image_api_url.rstrip('/')}/{quote(decorated, safe='')}"
        f"?width={size}&height={size}&seed={seed}&nologo=true"
    )


async def generate_image(prompt: str, anchor_image: str | None = None) -> dict:
    """Generate an image for *prompt* and return it as inline base64.

    Args:
        prompt: Text prompt; must be non-empty.
        anchor_image: Optional base64 reference image biasing style/composition.

    Returns:
        ``{"mimeType", "data", "url", "fileName"}``.

    Raises:
        ValueError: If *prompt* is empty.
        ImageGenerationError: If the upstream request fails.
    """
    prompt = (prompt or "").strip()
    if not prompt:
        raise ValueError("Missing prompt")

    settings = get_settings()
    seed = int(time.time() * 1000) % 1_000_000
    url = build_image_url(prompt, seed, anchor_image)
    logger.info("Requesting generated image (seed=%d, anchor=%s)", seed, bool(anchor_image))

    try:
        async with httpx.AsyncClient(timeout=settings.image_timeout_seconds) as http:
            response = await http.get(url, headers={"User-Agent": USER_AGENT})
    except httpx.HTTPError as exc:
        raise ImageGenerationError(f"Image request failed: {exc}") from exc

    if response.status_code != 200:
        raise ImageGenerationError(
            f"Image API rejected the request with status: {response.status_code}",
            status_code=response.status_code,
        )

    mime_type = response.headers.get("content-type", DEFAULT_MIME_TYPE).split(";")[0]
    return {
        "mimeType": mime_type or DEFAULT_MIME_TYPE,
        "data": base64.b64encode(response.content).decode("ascii"),
        "url": url,
        "fileName": f"generated_{seed}.jpg",
    }
