"""
Image Generation Service using the OpenAI Images API
"""
from __future__ import annotations

import asyncio
import base64
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiohttp
from openai import AsyncOpenAI

from dream_diary_backend.domain.dream.entities.scene import Scene, StructuredDream
from dream_diary_backend.domain.errors import NotConfigured, ProcessingFailed

logger = logging.getLogger(__name__)

DEFAULT_STYLE = "watercolor"

_SQUARE = (
    "in a PERFECT SQUARE format (1024x1024 pixels, 1:1 aspect ratio). The image MUST be exactly square "
    "with equal width and height - no rectangular dimensions allowed."
)
_SQUARE_ONLY = "CRITICAL: Generate a perfectly square image only."

STYLE_TEMPLATES: Dict[str, str] = {
    "watercolor": (
        f"Create a dreamy watercolor-style illustration {_SQUARE} The scene should be surreal, soft, and slightly "
        "abstract, as if taken from a vivid dream. Use muted pastel tones and fluid brushstrokes. The composition "
        "should be perfectly centered and balanced within the square frame, filling the entire square canvas "
        f"completely, evoking emotion and wonder. {_SQUARE_ONLY} Scene: {{prompt}}"
    ),
    "vintage": (
        f"Create a vintage comic book style illustration {_SQUARE} The scene should have a nostalgic, dream-like "
        "quality with soft, faded colors and gentle linework. The composition should be perfectly centered within "
        f"the square frame with subtle textures, filling the entire square canvas completely. {_SQUARE_ONLY} "
        "Scene: {prompt}"
    ),
    "minimal": (
        f"Create a minimalist illustration {_SQUARE} The scene should be simple yet evocative, with clean lines and "
        "soft colors, capturing the essence of a dream within the square composition. The image should fill the "
        f"entire square canvas perfectly. {_SQUARE_ONLY} Scene: {{prompt}}"
    ),
    "comic": (
        f"Create a comic book style illustration {_SQUARE} The scene should capture the dream-like narrative with "
        "vibrant colors and clear composition, perfectly balanced within the square frame, filling the entire "
        f"square canvas completely. {_SQUARE_ONLY} Scene: {{prompt}}"
    ),
}


def create_styled_prompt(base_prompt: str, style: str = DEFAULT_STYLE) -> str:
    template = STYLE_TEMPLATES.get(style, STYLE_TEMPLATES[DEFAULT_STYLE])
    return template.format(prompt=base_prompt)


def scene_filename(dream_id: str, scene_sequence: int) -> str:
    return f"dream_{dream_id}_scene_{scene_sequence}.png"


@dataclass
class ImageBatchResult:
    dream_summary: str
    images: List[Dict[str, Any]]
    generation_metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_scenes(self) -> int:
        return len(self.images)

    @property
    def successful_images(self) -> int:
        return sum(1 for img in self.images if not img.get("failed"))

    @property
    def failed_images(self) -> int:
        return sum(1 for img in self.images if img.get("failed"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dream_summary": self.dream_summary,
            "total_scenes": self.total_scenes,
            "successful_images": self.successful_images,
            "failed_images": self.failed_images,
            "images": self.images,
            "generation_metadata": self.generation_metadata,
        }


class ImageGenerationService:
    """Service for rendering dream scenes as comic panels"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "dall-e-3",
        size: str = "1024x1024",
        quality: str = "standard",
        output_dir: str = "generated_images",
        timeout_s: float = 60.0,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        if client is not None:
            self.client = client
        elif api_key:
            self.client = AsyncOpenAI(api_key=api_key, max_retries=0)
        else:
            self.client = None
        self.model = model
        self.size = size
        self.quality = quality
        self.output_dir = Path(output_dir)
        self.timeout_s = timeout_s

    def is_configured(self) -> bool:
        return self.client is not None

    def _require_client(self) -> None:
        if not self.is_configured():
            raise NotConfigured("Image generation service not configured. Please check your OPENAI_API_KEY.")

    # ───────────────────────────── single scene ───────────────────────────── #

    async def generate_scene_image(self, scene: Scene, style: str = DEFAULT_STYLE) -> Dict[str, Any]:
        """
        Render one scene.

        Returns the image record including the base64 payload under
        ``b64_json``; raises on any provider failure.
        """
        self._require_client()
        styled_prompt = create_styled_prompt(scene.image_prompt, style)
        logger.info(f"Generating image for scene {scene.sequence}: {scene.description[:50]!r}")

        start = time.time()
        b64_json, response_text = await asyncio.wait_for(self._request(styled_prompt), timeout=self.timeout_s)
        elapsed_ms = int((time.time() - start) * 1000)
        logger.info(f"Image generated for scene {scene.sequence} in {elapsed_ms}ms")

        return {
            "scene_sequence": scene.sequence,
            "scene_description": scene.description,
            "original_prompt": scene.image_prompt,
            "styled_prompt": styled_prompt,
            "b64_json": b64_json,
            "response_text": response_text,
            "generation_time": elapsed_ms,
            "model": self.model,
        }

    async def _request(self, prompt: str) -> tuple[str, Optional[str]]:
        kwargs: Dict[str, Any] = {"model": self.model, "prompt": prompt, "size": self.size, "n": 1}
        # gpt-image models always return base64 and reject the dall-e knobs
        if not self.model.startswith("gpt-image"):
            kwargs["quality"] = self.quality
            kwargs["response_format"] = "b64_json"

        response = await self.client.images.generate(**kwargs)
        item = response.data[0]
        revised_prompt = getattr(item, "revised_prompt", None)

        if item.b64_json:
            return item.b64_json, revised_prompt
        if item.url:
            return await self._download_as_b64(item.url), revised_prompt
        raise ProcessingFailed("No image data received from provider")

    async def _download_as_b64(self, url: str) -> str:
        async with aiohttp.ClientSession() as session:
            async with session.get(url) as resp:
                if resp.status != 200:
                    raise ProcessingFailed(f"Failed to download generated image: HTTP {resp.status}")
                image_data = await resp.read()
        return base64.b64encode(image_data).decode("ascii")

    # ───────────────────────────── whole dream ───────────────────────────── #

    async def synthesize_all(
        self,
        structured: StructuredDream,
        style: str = DEFAULT_STYLE,
        concurrent: bool = False,
        delay_ms: int = 2000,
    ) -> ImageBatchResult:
        """Render every scene in sequence order.

        Sequential mode records a failed scene as ``{scene_sequence, failed,
        error}`` and moves on.  Concurrent mode issues every request at once
        and fails the whole batch on the first error.
        """
        self._require_client()
        scenes = structured.ordered_scenes
        logger.info(f"Generating {len(scenes)} images ({style}, concurrent={concurrent}) for dream: {structured.summary[:50]!r}")

        start = time.time()
        if concurrent:
            tasks = [asyncio.ensure_future(self.generate_scene_image(s, style)) for s in scenes]
            try:
                images = list(await asyncio.gather(*tasks))
            except Exception as e:
                pending = [task for task in tasks if not task.done()]
                for task in pending:
                    task.cancel()
                logger.error(f"Concurrent image generation failed, cancelled {len(pending)} pending requests: {e}")
                raise
        else:
            images = []
            for index, scene in enumerate(scenes):
                try:
                    images.append(await self.generate_scene_image(scene, style))
                except Exception as e:
                    logger.error(f"Failed to generate image for scene {scene.sequence}: {e}")
                    images.append({
                        "scene_sequence": scene.sequence,
                        "error": str(e) or type(e).__name__,
                        "failed": True,
                    })
                if delay_ms > 0 and index < len(scenes) - 1:
                    logger.debug(f"Waiting {delay_ms}ms before next image generation")
                    await asyncio.sleep(delay_ms / 1000)

        result = ImageBatchResult(
            dream_summary=structured.summary,
            images=images,
            generation_metadata={
                "concurrent": concurrent,
                "delay": delay_ms,
                "total_time": int((time.time() - start) * 1000),
                "model": self.model,
                "style": style,
            },
        )
        logger.info(f"Generated {result.successful_images}/{result.total_scenes} images successfully")
        return result

    async def save_images(self, images: List[Dict[str, Any]], dream_id: str) -> List[Dict[str, Any]]:
        """Write every successful payload to ``<output_dir>/dream_<id>_scene_<seq>.png``."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: self.output_dir.mkdir(parents=True, exist_ok=True))

        saved_files = []
        for image in images:
            if image.get("failed") or not image.get("b64_json"):
                continue
            filename = scene_filename(dream_id, image["scene_sequence"])
            filepath = self.output_dir / filename
            try:
                data = base64.b64decode(image["b64_json"], validate=True)
                await loop.run_in_executor(None, filepath.write_bytes, data)
            except (OSError, ValueError) as e:
                logger.error(f"Failed to save image for scene {image['scene_sequence']}: {e}")
                continue

            saved_files.append({
                "scene_sequence": image["scene_sequence"],
                "filename": filename,
                "filepath": str(filepath),
                "size": len(data),
            })
            logger.info(f"Saved image {filename} ({round(len(data) / 1024)}KB)")
        return saved_files

    def stats(self) -> Dict[str, Any]:
        return {
            "service": "OpenAI Image Generation",
            "model": self.model,
            "configured": self.is_configured(),
            "supported_styles": list(STYLE_TEMPLATES),
        }
