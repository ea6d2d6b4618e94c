"""
Books handler - maps gateway events onto a Books REST resource.

Request example:
    POST /api  {"eventName": "AssignAccessRoleEvent",
                "subjectName": "RACF_System-B", "userID": "peter01"}

is sent downstream as:
    POST /api/v1/Books  {"ID": 1, "Title": "AssignAccessRoleEvent",
                         "Description": "RACF_System-B", "Excerpt": "peter01"}
"""

from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from restplugin.exceptions import ValidationError
from restplugin.handlers.base import BaseApiHandler
from restplugin.services.credentials import RequestContext


class BookEvent(BaseModel):
    """Complete event, required for create and replace."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    event_name: str = Field(alias="eventName", min_length=1)
    subject_name: str = Field(alias="subjectName", min_length=1)
    user_id: str = Field(alias="userID", min_length=1)


class BookEventPatch(BaseModel):
    """Partial event, at least one field must be set."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    event_name: str | None = Field(default=None, alias="eventName")
    subject_name: str | None = Field(default=None, alias="subjectName")
    user_id: str | None = Field(default=None, alias="userID")

    def is_empty(self) -> bool:
        return not (self.event_name or self.subject_name or self.user_id)


class BooksHandler(BaseApiHandler):
    """Books resource on the downstream service."""

    RESOURCE_PATH = "/api/v1/Books"

    @property
    def resource_path(self) -> str:
        return self.RESOURCE_PATH

    async def create(
        self,
        base_entity: str,
        payload: dict[str, Any],
        ctx: RequestContext | None = None,
    ) -> Any:
        logger.debug(f"[{base_entity}] handling create payload={payload}")
        event = self.parse_payload(BookEvent, payload, "POST", base_entity)
        body = {
            "ID": 1,
            "Title": event.event_name,
            "Description": event.subject_name,
            "Excerpt": event.user_id,
        }
        return await self.send(base_entity, "POST", self.resource_path, body, ctx)

    async def update(
        self,
        base_entity: str,
        id: str | int,
        payload: dict[str, Any],
        ctx: RequestContext | None = None,
    ) -> Any:
        logger.debug(f"[{base_entity}] handling update id={id} payload={payload}")
        path = self.item_path(base_entity, id)
        event = self.parse_payload(BookEvent, payload, "PUT", base_entity)
        body = {
            "ID": id,
            "Title": event.event_name,
            "Description": event.subject_name,
            "Excerpt": event.user_id,
        }
        return await self.send(base_entity, "PUT", path, body, ctx)

    async def partial_update(
        self,
        base_entity: str,
        id: str | int,
        payload: dict[str, Any],
        ctx: RequestContext | None = None,
    ) -> Any:
        logger.debug(
            f"[{base_entity}] handling partial update id={id} payload={payload}"
        )
        path = self.item_path(base_entity, id)
        patch = self.parse_payload(BookEventPatch, payload, "PATCH", base_entity)
        if patch.is_empty():
            raise ValidationError("Unsupported PATCH content", entity=base_entity)

        body: dict[str, Any] = {"ID": id}
        if patch.event_name:
            body["Title"] = patch.event_name
        if patch.subject_name:
            body["Description"] = patch.subject_name
        if patch.user_id:
            body["Excerpt"] = patch.user_id
        return await self.send(base_entity, "PATCH", path, body, ctx)

    async def read(
        self,
        base_entity: str,
        id: str | int | None = None,
        query: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
        ctx: RequestContext | None = None,
    ) -> Any:
        logger.debug(f"[{base_entity}] handling read id={id} query={query}")
        if id is not None and str(id) != "":
            return await self.send(
                base_entity, "GET", self.item_path(base_entity, id), ctx=ctx
            )
        options = {"params": query} if query else None
        return await self.send(
            base_entity, "GET", self.resource_path, ctx=ctx, options=options
        )

    async def delete(
        self, base_entity: str, id: str | int, ctx: RequestContext | None = None
    ) -> Any:
        logger.debug(f"[{base_entity}] handling delete id={id}")
        path = self.item_path(base_entity, id)
        return await self.send(base_entity, "DELETE", path, ctx=ctx)
