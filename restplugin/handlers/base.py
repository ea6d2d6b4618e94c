"""
Base operation handler interface.
"""

from abc import ABC, abstractmethod
from typing import Any, TypeVar
from urllib.parse import quote

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from restplugin.exceptions import ValidationError
from restplugin.services.client import EndpointClient, get_endpoint_client
from restplugin.services.credentials import RequestContext

M = TypeVar("M", bound=BaseModel)


class BaseApiHandler(ABC):
    """
    Abstract base class for operation handlers.

    All handlers should:
    - Validate input before anything goes over the wire
    - Use EndpointClient for HTTP requests (auth, retry, failover)
    - Return the downstream response body
    """

    def __init__(self, client: EndpointClient | None = None):
        self.client = client or get_endpoint_client()

    @property
    @abstractmethod
    def resource_path(self) -> str:
        """Collection path on the downstream service."""
        ...

    @abstractmethod
    async def create(
        self,
        base_entity: str,
        payload: dict[str, Any],
        ctx: RequestContext | None = None,
    ) -> Any: ...

    @abstractmethod
    async def update(
        self,
        base_entity: str,
        id: str | int,
        payload: dict[str, Any],
        ctx: RequestContext | None = None,
    ) -> Any: ...

    @abstractmethod
    async def partial_update(
        self,
        base_entity: str,
        id: str | int,
        payload: dict[str, Any],
        ctx: RequestContext | None = None,
    ) -> Any: ...

    @abstractmethod
    async def read(
        self,
        base_entity: str,
        id: str | int | None = None,
        query: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
        ctx: RequestContext | None = None,
    ) -> Any: ...

    @abstractmethod
    async def delete(
        self, base_entity: str, id: str | int, ctx: RequestContext | None = None
    ) -> Any: ...

    def item_path(self, base_entity: str, id: str | int | None) -> str:
        if id is None or str(id) == "":
            raise ValidationError("Missing resource id", entity=base_entity)
        return f"{self.resource_path}/{quote(str(id), safe='')}"

    @staticmethod
    def parse_payload(
        model: type[M], payload: Any, method: str, base_entity: str
    ) -> M:
        """Validate caller content, reporting failures as ValidationError."""
        if not isinstance(payload, dict):
            raise ValidationError(f"Unsupported {method} content", entity=base_entity)
        try:
            return model.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Unsupported {method} content", entity=base_entity
            ) from e

    async def send(
        self,
        base_entity: str,
        method: str,
        path: str,
        body: Any = None,
        ctx: RequestContext | None = None,
        options: dict[str, Any] | None = None,
    ) -> Any:
        response = await self.client.request(
            base_entity, method, path, body, ctx, options
        )
        return response.body
