from __future__ import annotations

from archiv.providers.captioning.base import CaptionResult


class FakeCaptionProvider:
    def __init__(self, caption: str = "an image", model_id: str = "fake-caption") -> None:
        # Deterministic caption keeps tests stable without external calls.
        self._caption = caption
        self._model_id = model_id
        self.calls = 0

    async def caption(self, image_bytes: bytes) -> CaptionResult:
        _ = image_bytes
        self.calls += 1
        return CaptionResult(text=self._caption, model_id=self._model_id)
