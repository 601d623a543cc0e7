"""
Request orchestration: acquire -> normalize -> dispatch -> relay.

One pipeline instance is created per application and shared by all requests;
everything request-specific lives in local variables or the request's
ScratchSpace.
"""
import base64
import logging
from dataclasses import dataclass, field
from io import BytesIO
from typing import Any, Dict, List, Optional

import numpy as np
from fastapi.responses import Response
from PIL import Image

from acquisition import ImageAsset, ImageFetcher, acquire
from config import APIConfig
from errors import MissingInputError, RemoteModelError, ImageDecodeError
from model_manager import ModelManager, PredictionPayload, resolve_target
from process import PERSON_SIZE, TRYON_SIZE, WARDROBE_SIZE, image_to_base64, normalize_image, open_image
from relay import OutputFormat, PredictionResult, ResultRelay
from scratch import ScratchSpace

logger = logging.getLogger(__name__)


@dataclass
class ImageSource:
    """What the caller supplied for one image slot."""
    name: str
    upload: Optional[ImageAsset] = None
    url: Optional[str] = None
    b64: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.upload is None and not self.url and not self.b64


@dataclass
class TryOnRequest:
    category: Optional[str]
    human: ImageSource
    garment: ImageSource
    description: Optional[str] = None
    request_id: str = field(default="-")


def _mask_to_image(mask: Any) -> Image.Image:
    if isinstance(mask, Image.Image):
        return mask
    if isinstance(mask, str):
        return open_image(base64.b64decode(mask))
    raise RemoteModelError(f"Unexpected mask type from segmentation model: {type(mask).__name__}")


def _mask_coverage(mask: Image.Image) -> float:
    """Fraction of pixels set in a segmentation mask."""
    pixels = np.asarray(mask.convert("L"))
    if pixels.size == 0:
        return 0.0
    return float((pixels > 127).mean())


class TryOnPipeline:
    def __init__(self, config: APIConfig, models: ModelManager, fetcher: ImageFetcher):
        self.config = config
        self.models = models
        self.fetcher = fetcher
        self.relay = ResultRelay(fetcher, [config.gradio_temp_dir])

    async def run(self, request: TryOnRequest, fmt: OutputFormat) -> Response:
        # Category first so a bad token costs no downloads or resizing
        target = resolve_target(request.category, self.config)

        missing = [source.name for source in (request.human, request.garment) if source.is_empty]
        if missing:
            raise MissingInputError(f"{' and '.join(missing)} {'is' if len(missing) == 1 else 'are'} required.")

        human = await acquire(request.human.name, self.fetcher, request.human.upload, request.human.url, request.human.b64)
        garment = await acquire(
            request.garment.name, self.fetcher, request.garment.upload, request.garment.url, request.garment.b64
        )

        payload = PredictionPayload(
            human=normalize_image(human.data, TRYON_SIZE),
            garment=normalize_image(garment.data, TRYON_SIZE),
            description=request.description or self.config.default_garment_description,
            steps=self.config.denoise_steps,
            seed=self.config.seed,
        )

        with ScratchSpace(self.config.scratch_dir, request.request_id) as scratch:
            raw = await self.models.tryon(target, payload, scratch)
            result = PredictionResult.from_raw(raw)
            return await self.relay.render(result, fmt)

    async def check_wardrobe(self, asset: Optional[ImageAsset]) -> Dict[str, Any]:
        if asset is None:
            raise MissingInputError("garmentImage is required.")
        image = normalize_image(asset.data, WARDROBE_SIZE)
        predictions = await self.models.classify_garment(image)
        predictions.sort(key=lambda p: p["score"], reverse=True)
        top = predictions[0] if predictions else {"label": None, "score": None}
        return {"result": predictions, "label": top["label"], "score": top["score"]}

    async def check_person(self, asset: Optional[ImageAsset]) -> Dict[str, Any]:
        if asset is None:
            raise MissingInputError("image is required.")
        image = normalize_image(asset.data, PERSON_SIZE, fmt="PNG")
        segments = await self.models.segment_person(image)

        person_labels = {label.lower() for label in self.config.person_labels}
        results: List[Dict[str, Any]] = []
        person_coverage = 0.0
        for segment in segments:
            mask_b64 = None
            coverage = None
            if segment.get("mask") is not None:
                try:
                    mask = _mask_to_image(segment["mask"])
                except ImageDecodeError as exc:
                    raise RemoteModelError(f"Segmentation model returned an undecodable mask: {exc.message}") from exc
                coverage = _mask_coverage(mask)
                buffer = BytesIO()
                mask.save(buffer, format="PNG")
                mask_b64 = image_to_base64(buffer.getvalue())
            label = segment.get("label") or ""
            if label.lower() in person_labels and coverage is not None:
                person_coverage = max(person_coverage, coverage)
            results.append({"label": label, "score": segment.get("score"), "coverage": coverage, "mask": mask_b64})

        has_person = person_coverage >= self.config.min_person_coverage and person_coverage > 0
        logger.info(f"Person check: coverage={person_coverage:.3f}, hasPerson={has_person}")
        return {"result": results, "hasPerson": has_person, "personCoverage": round(person_coverage, 4)}
