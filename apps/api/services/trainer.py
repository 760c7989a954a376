"""Incremental trainer clients with a feature-flagged disabled stub."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Sequence

import httpx

from config import Settings, settings
from fusion.errors import TrainerUnavailableError, TrainingError
from fusion.models import LearningQueueEntry, TrainingResult


class BaseTrainer(ABC):
    name: str

    @abstractmethod
    async def incremental_train(
        self, examples: Sequence[LearningQueueEntry], options: Dict[str, Any]
    ) -> TrainingResult:
        raise NotImplementedError


class HttpTrainer(BaseTrainer):
    """Posts correction batches to a remote training service."""

    name = "http"

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def incremental_train(
        self, examples: Sequence[LearningQueueEntry], options: Dict[str, Any]
    ) -> TrainingResult:
        payload = {
            "examples": [example.model_dump(mode="json") for example in examples],
            "options": dict(options),
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.post(f"{self.base_url}/incremental_train", json=payload)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as exc:
            raise TrainingError(f"Trainer request failed: {exc}") from exc
        except ValueError as exc:
            raise TrainingError("Trainer returned a non-JSON response") from exc

        if not isinstance(body, dict):
            raise TrainingError("Trainer response must be a JSON object")
        return TrainingResult(accuracy=body.get("accuracy"), loss=body.get("loss"))


class DisabledTrainer(BaseTrainer):
    """Fails deterministically until ``TRAINER_URL`` is configured."""

    name = "disabled"

    async def incremental_train(
        self, examples: Sequence[LearningQueueEntry], options: Dict[str, Any]
    ) -> TrainingResult:
        raise TrainerUnavailableError(
            f"Incremental trainer is not configured; {len(examples)} corrections were not trained. "
            "Set TRAINER_URL to enable incremental training."
        )


def build_trainer(config: Settings = settings) -> BaseTrainer:
    if config.TRAINER_URL:
        return HttpTrainer(base_url=config.TRAINER_URL, timeout_seconds=float(config.TRAINER_TIMEOUT_SECONDS))
    return DisabledTrainer()
