from __future__ import annotations

from archiv.core.errors import CaptionProviderError
from archiv.providers.captioning.base import CaptionResult
from archiv.providers.workers_ai import WorkersAIClient


class WorkersAICaptionProvider:
    def __init__(
        self,
        client: WorkersAIClient,
        model: str,
        *,
        prompt: str,
        max_tokens: int,
    ) -> None:
        self._client = client
        self._model = model
        self._prompt = prompt
        self._max_tokens = max_tokens

    async def caption(self, image_bytes: bytes) -> CaptionResult:
        # The vision model takes the raw image as a list of byte values.
        result = await self._client.run(
            self._model,
            {
                "image": list(image_bytes),
                "prompt": self._prompt,
                "max_tokens": self._max_tokens,
            },
            error_cls=CaptionProviderError,
        )
        description = result.get("description")
        if not isinstance(description, str) or not description.strip():
            raise CaptionProviderError("caption response is missing a description")
        return CaptionResult(text=description.strip(), model_id=self._model)

    async def aclose(self) -> None:
        await self._client.aclose()
