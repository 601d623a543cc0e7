"""
Remote model management for the FitMirror Try-On API.

Resolves garment categories to hosted try-on Spaces and owns the process-wide
clients for the inference provider.
"""
import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from gradio_client import Client, handle_file
from huggingface_hub import InferenceClient

from config import APIConfig
from errors import InvalidCategoryError, RemoteModelError, RemoteModelTimeoutError, ServiceError
from process import NormalizedImage
from scratch import ScratchSpace

logger = logging.getLogger(__name__)

CATEGORIES = ("up", "down", "dress")


@dataclass(frozen=True)
class ModelTarget:
    """The remote endpoint selected for one try-on request."""
    space: str
    api_name: str
    category: Optional[str] = None


@dataclass
class PredictionPayload:
    """Arguments of a try-on call; the order in to_args is fixed by the remote model."""
    human: NormalizedImage
    garment: NormalizedImage
    description: str
    auto_mask: bool = True
    auto_crop: bool = True
    steps: int = 30
    seed: int = 42

    def to_args(self, human_file: Any, garment_file: Any) -> List[Any]:
        return [
            {"background": human_file, "layers": [], "composite": None},
            garment_file,
            self.description,
            self.auto_mask,
            self.auto_crop,
            self.steps,
            self.seed,
        ]


def resolve_target(category: Optional[str], config: APIConfig) -> ModelTarget:
    """Map a ``type`` token to a try-on Space, before any image work happens."""
    allowed = ", ".join(CATEGORIES)
    if category is None or not category.strip():
        if config.require_category:
            raise InvalidCategoryError(f"Invalid type parameter. Must be one of: {allowed}")
        return ModelTarget(config.tryon_space, config.tryon_api_name)

    token = category.strip().lower()
    space = config.tryon_spaces.get(token)
    if token not in CATEGORIES or not space:
        raise InvalidCategoryError(f"Invalid type parameter '{category}'. Must be one of: {allowed}")
    return ModelTarget(space, config.tryon_api_name, token)


class ModelManager:
    """Holds the provider clients; built once at startup and shared by all requests."""

    def __init__(self, config: APIConfig):
        self.config = config
        self._clients: Dict[str, Client] = {}
        self._lock = asyncio.Lock()
        self._inference = InferenceClient(token=config.hf_api_key or None, timeout=config.predict_timeout)

    async def _call(self, description: str, func, *args, **kwargs):
        """Run a blocking provider call in the executor, bounded by predict_timeout."""
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, functools.partial(func, *args, **kwargs)),
                timeout=self.config.predict_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise RemoteModelTimeoutError(
                f"{description} timed out after {self.config.predict_timeout:g}s"
            ) from exc
        except ServiceError:
            raise
        except Exception as exc:  # noqa: BLE001 (provider SDKs raise many types)
            raise RemoteModelError(f"{description} failed: {exc}") from exc

    async def _get_client(self, space: str) -> Client:
        client = self._clients.get(space)
        if client is not None:
            return client

        async with self._lock:
            if space not in self._clients:
                logger.info(f"Connecting to try-on Space {space}...")
                self._clients[space] = await self._call(
                    f"Connecting to {space}",
                    Client,
                    space,
                    hf_token=self.config.hf_api_key or None,
                    verbose=False,
                    download_files=False,
                )
                logger.info(f"Connected to {space}")
            return self._clients[space]

    async def tryon(self, target: ModelTarget, payload: PredictionPayload, scratch: ScratchSpace) -> Any:
        """Issue exactly one try-on prediction and return the raw remote result."""
        human_path = scratch.write(f"human_resized.{payload.human.extension}", payload.human.data)
        garment_path = scratch.write(f"garment_resized.{payload.garment.extension}", payload.garment.data)

        client = await self._get_client(target.space)
        args = payload.to_args(handle_file(human_path), handle_file(garment_path))

        logger.info(f"[{scratch.request_id}] Sending prediction request to {target.space}{target.api_name}")
        result = await self._call(
            f"Prediction on {target.space}",
            client.predict,
            *args,
            api_name=target.api_name,
        )
        logger.info(f"[{scratch.request_id}] Prediction completed successfully")
        return result

    async def classify_garment(self, image: NormalizedImage) -> List[Dict[str, Any]]:
        model = self.config.wardrobe_model
        logger.info(f"Classifying garment with {model}")
        elements = await self._call(
            f"Garment classification with {model}",
            self._inference.image_classification,
            image.data,
            model=model,
        )
        return [{"label": e.label, "score": float(e.score)} for e in elements]

    async def segment_person(self, image: NormalizedImage) -> List[Dict[str, Any]]:
        """Returns segments as dicts; ``mask`` is whatever the provider returned (PIL image or base64)."""
        model = self.config.person_model
        logger.info(f"Segmenting image with {model}")
        elements = await self._call(
            f"Person segmentation with {model}",
            self._inference.image_segmentation,
            image.data,
            model=model,
        )
        return [
            {
                "label": e.label,
                "score": float(e.score) if e.score is not None else None,
                "mask": e.mask,
            }
            for e in elements
        ]

    def get_status(self) -> dict:
        """Get current provider status for health checks."""
        return {
            "tryon_spaces": dict(self.config.tryon_spaces),
            "connected_spaces": sorted(self._clients),
            "wardrobe_model": self.config.wardrobe_model,
            "person_model": self.config.person_model,
            "authenticated": bool(self.config.hf_api_key),
        }
