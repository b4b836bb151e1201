from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from open_chat_bridge.backends.base import ChatBackend, ClientGetter
from open_chat_bridge.backends.kimi import KimiBackend
from open_chat_bridge.backends.momentum import MomentumBackend
from open_chat_bridge.errors import UnknownModelError
from open_chat_bridge.runtime.credential_pool import CredentialPool
from open_chat_bridge.settings import Settings


class BackendRegistry:
    def __init__(self, backends: list[ChatBackend]) -> None:
        self._backends = list(backends)
        self._by_model: dict[str, ChatBackend] = {}
        for backend in self._backends:
            for model in backend.models:
                self._by_model.setdefault(model, backend)

    def __iter__(self) -> Iterator[ChatBackend]:
        return iter(self._backends)

    def available_models(self) -> list[str]:
        return list(self._by_model)

    def resolve(self, model: str) -> ChatBackend:
        backend = self._by_model.get(model)
        if backend is None:
            raise UnknownModelError(model, self.available_models())
        return backend

    def models_response(self, created: int) -> dict[str, Any]:
        return {
            "object": "list",
            "data": [
                {
                    "id": model,
                    "object": "model",
                    "created": created,
                    "owned_by": backend.owned_by,
                }
                for model, backend in self._by_model.items()
            ],
        }


def build_backend_registry(
    settings: Settings, client_getter: ClientGetter
) -> BackendRegistry:
    return BackendRegistry(
        [
            KimiBackend(
                base_url=settings.kimi_base_url,
                default_pool=CredentialPool(settings.kimi_tokens_list, name="kimi-default"),
                client_getter=client_getter,
            ),
            MomentumBackend(
                base_url=settings.momentum_base_url,
                default_pool=CredentialPool(
                    settings.momentum_sessions_list, name="momentum-default"
                ),
                client_getter=client_getter,
            ),
        ]
    )
