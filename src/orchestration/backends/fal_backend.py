"""Hosted fal.ai generation backend over HTTP."""

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from ...config.model_catalog import TRAINING_ENDPOINT, ModelCatalog
from ...models.generation_models import GenerationResult, JobStatus
from ..errors import (
    BackendUnreachableError,
    ModelInvocationError,
    ModelTimeoutError,
    RateLimitError,
)
from .base import GenerationBackend

logger = logging.getLogger(__name__)


class FalBackend(GenerationBackend):
    """
    fal.ai client for image generation and LoRA training.

    PATTERN: Synchronous run endpoint for images, queue API for training
    CRITICAL: Connection failures are reported as unreachable, so the
        dispatcher can tell an outage from a model failure
    GOTCHA: Authorization uses the "Key" scheme, not "Bearer"
    """

    def __init__(
        self,
        api_key: Optional[str],
        catalog: Optional[ModelCatalog] = None,
        base_url: str = "https://fal.run",
        queue_url: str = "https://queue.fal.run",
        timeout: float = 180.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize fal backend.

        Args:
            api_key: fal API key
            catalog: Model catalog for endpoint lookup
            base_url: Synchronous run endpoint
            queue_url: Queue endpoint for training jobs
            timeout: HTTP timeout in seconds
            client: Preconfigured client (tests inject a mock transport)
        """
        super().__init__()
        self.catalog = catalog or ModelCatalog()
        self.base_url = base_url.rstrip("/")
        self.queue_url = queue_url.rstrip("/")
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Authorization": f"Key {api_key}"} if api_key else {},
        )

    async def generate(
        self,
        prompt: str,
        model_id: str,
        parameters: Dict[str, Any],
    ) -> GenerationResult:
        profile = self.catalog.get(model_id)
        if profile is None:
            raise ModelInvocationError(f"Unknown model: {model_id}", model_id=model_id)

        payload = {"prompt": prompt, **parameters}
        lora_path = payload.pop("lora_path", None)
        lora_scale = payload.pop("lora_scale", 1.0)
        if lora_path and profile.model_id == "flux-lora":
            payload["loras"] = [{"path": lora_path, "scale": lora_scale}]

        data = await self._request(
            "POST", f"{self.base_url}/{profile.endpoint}", model_id, json=payload
        )
        try:
            return GenerationResult.model_validate(data)
        except PydanticValidationError as e:
            raise ModelInvocationError(
                f"Malformed response from {model_id}: {e}", model_id=model_id
            ) from e

    async def train(
        self,
        images_data_url: str,
        name: str,
        trigger_word: str,
        options: Dict[str, Any],
    ) -> str:
        payload = {
            "images_data_url": images_data_url,
            "trigger_word": trigger_word,
            "is_style": options.get("is_style", False),
            "steps": options.get("steps", 1000),
            "learning_rate": options.get("learning_rate", 0.0004),
            "batch_size": options.get("batch_size", 1),
            "resolution": options.get("resolution", 512),
        }
        params = {}
        if options.get("webhook_url"):
            params["fal_webhook"] = options["webhook_url"]

        data = await self._request(
            "POST",
            f"{self.queue_url}/{TRAINING_ENDPOINT}",
            TRAINING_ENDPOINT,
            json=payload,
            params=params or None,
        )
        request_id = data.get("request_id")
        if not request_id:
            raise ModelInvocationError(
                "Training submission returned no request id",
                model_id=TRAINING_ENDPOINT,
            )
        self.logger.info(f"Submitted training job {request_id} for {name}")
        return request_id

    async def get_status(self, job_id: str) -> JobStatus:
        base = f"{self.queue_url}/{TRAINING_ENDPOINT}/requests/{job_id}"
        data = await self._request("GET", f"{base}/status", TRAINING_ENDPOINT)
        status = data.get("status", "UNKNOWN")

        result = None
        if status == "COMPLETED":
            result = await self._request("GET", base, TRAINING_ENDPOINT)

        return JobStatus(
            job_id=job_id,
            status=status,
            result=result,
            error=data.get("error"),
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        model_id: str,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        """
        Perform one HTTP call and map failures.

        Raises:
            BackendUnreachableError: Connection could not be established
            ModelTimeoutError: Request timed out after connecting
            RateLimitError: HTTP 429
            ModelInvocationError: Any other failure
        """
        try:
            response = await self.client.request(method, url, **kwargs)

            if response.status_code == 429:
                raise RateLimitError(
                    f"fal rate limit exceeded for {model_id}", model_id=model_id
                )

            response.raise_for_status()
            return response.json()

        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            self.logger.warning(f"fal unreachable for {model_id}: {e}")
            raise BackendUnreachableError(
                f"fal unreachable: {e}", model_id=model_id
            ) from e
        except httpx.TimeoutException as e:
            raise ModelTimeoutError(
                f"fal request timed out for {model_id}", model_id=model_id
            ) from e
        except httpx.HTTPStatusError as e:
            self.logger.error(f"fal API error for {model_id}: {e}")
            raise ModelInvocationError(
                f"fal API error {e.response.status_code}: {e.response.text}",
                model_id=model_id,
            ) from e
        except httpx.HTTPError as e:
            self.logger.error(f"HTTP error for {model_id}: {e}")
            raise ModelInvocationError(f"HTTP error: {e}", model_id=model_id) from e
        except ValueError as e:
            raise ModelInvocationError(
                f"Invalid JSON from fal for {model_id}", model_id=model_id
            ) from e
