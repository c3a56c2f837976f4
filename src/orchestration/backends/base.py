"""Base generation backend abstraction."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict

from ...models.generation_models import GenerationResult, JobStatus

logger = logging.getLogger(__name__)


class GenerationBackend(ABC):
    """
    Abstract client for a hosted image generation service.

    All backends must map their failures onto the ModelInvocationError
    family so the dispatcher can isolate them per model.
    """

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{type(self).__name__}")

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        model_id: str,
        parameters: Dict[str, Any],
    ) -> GenerationResult:
        """
        Run one model for one prompt.

        Args:
            prompt: Text prompt
            model_id: Catalog model identifier
            parameters: Generation options (image size, steps, ...)

        Returns:
            GenerationResult with images and backend-reported cost

        Raises:
            RateLimitError: When rate limited
            BackendUnreachableError: When the service cannot be reached
            ModelInvocationError: On any other failure
        """
        pass

    @abstractmethod
    async def train(
        self,
        images_data_url: str,
        name: str,
        trigger_word: str,
        options: Dict[str, Any],
    ) -> str:
        """
        Submit a personalization training job.

        Args:
            images_data_url: URL of the zipped training photos
            name: Human readable model name
            trigger_word: Token that invokes the trained subject
            options: Extra training options

        Returns:
            Backend job identifier
        """
        pass

    @abstractmethod
    async def get_status(self, job_id: str) -> JobStatus:
        """Current status of a submitted training job."""
        pass

    async def close(self) -> None:
        """Release network resources."""
        pass
