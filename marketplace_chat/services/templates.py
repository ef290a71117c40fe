"""
Templates & Quick Responses

Role-scoped canned replies. Lists come through the query cache and are
filtered locally; mutations invalidate ("templates", ...) or
("quick_responses", ...). Applying a template bumps its usage counter in the
background via the delivery queue.
"""
import logging
from typing import Iterable, List, Optional, Sequence

from pydantic import ValidationError

from marketplace_chat.core.context import ChatContext
from marketplace_chat.core.delivery_queue import deliver_later
from marketplace_chat.core.errors import ChatValidationError, MalformedResponseError
from marketplace_chat.models.templates import ChatTemplate, QuickResponse, QuickResponseInput, TemplateInput

logger = logging.getLogger(__name__)


def _validation_error(e: ValidationError) -> ChatValidationError:
    first = e.errors()[0]
    field = ".".join(str(p) for p in first.get("loc", ())) or None
    return ChatValidationError(f"{field}: {first.get('msg')}", field=field, reason="invalid")


def _parse_items(model, raw: Iterable, label: str) -> list:
    items = []
    for item in raw or []:
        try:
            items.append(model.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Skipping invalid {label}: {e.error_count()} error(s)")
    return items


def _unwrap(raw, key: str):
    if isinstance(raw, dict) and isinstance(raw.get(key), dict):
        return raw[key]
    return raw


def filter_templates(
    templates: Sequence[ChatTemplate],
    search: str = "",
    category: Optional[str] = None,
) -> List[ChatTemplate]:
    query = search.strip().lower()
    result = []
    for t in templates:
        if category and category != "all" and t.category != category:
            continue
        if query and not (
            query in t.name.lower()
            or query in t.content.lower()
            or any(query in tag.lower() for tag in t.tags)
        ):
            continue
        result.append(t)
    return result


def filter_quick_responses(
    responses: Sequence[QuickResponse],
    search: str = "",
    category: Optional[str] = None,
) -> List[QuickResponse]:
    query = search.strip().lower()
    result = []
    for r in responses:
        if category and category != "all" and r.category != category:
            continue
        if query and query not in r.text.lower() and query not in r.shortcut.lower():
            continue
        result.append(r)
    return result


class TemplateLibrary:
    """Templates and quick responses visible to the acting role."""

    def __init__(self, context: ChatContext):
        self.context = context

    @property
    def role(self) -> str:
        return self.context.role.value

    # ===========================================
    # Templates
    # ===========================================

    async def list_templates(self, force: bool = False) -> List[ChatTemplate]:
        async def fetcher():
            raw = await self.context.api.list_templates(self.role)
            return _parse_items(ChatTemplate, raw, "template")

        return await self.context.cache.get(("templates", self.role), fetcher, force=force)

    def _template_input(self, name: str, content: str, category: str, tags) -> TemplateInput:
        try:
            return TemplateInput(name=name, content=content, category=category, tags=tags or [])
        except ValidationError as e:
            raise _validation_error(e) from e

    def _template(self, raw, action: str) -> ChatTemplate:
        try:
            return ChatTemplate.model_validate(_unwrap(raw, "template"))
        except ValidationError as e:
            raise MalformedResponseError(f"{action} template: {e.error_count()} invalid field(s)") from e

    async def create_template(self, name: str, content: str, category: str = "", tags=None) -> ChatTemplate:
        data = self._template_input(name, content, category, tags)
        raw = await self.context.api.create_template({**data.to_wire(), "role": self.role})
        self.context.cache.invalidate("templates")
        template = self._template(raw, "create")
        logger.info(f"Created template {template.id} ({template.name})")
        return template

    async def update_template(
        self, template_id: str, name: str, content: str, category: str = "", tags=None
    ) -> ChatTemplate:
        data = self._template_input(name, content, category, tags)
        raw = await self.context.api.update_template(template_id, data.to_wire())
        self.context.cache.invalidate("templates")
        return self._template(raw, "update")

    async def delete_template(self, template_id: str):
        await self.context.api.delete_template(template_id)
        self.context.cache.invalidate("templates")
        logger.info(f"Deleted template {template_id}")

    def apply_template(self, template: ChatTemplate) -> str:
        """Content to put in the draft. Usage is recorded in the background."""
        deliver_later(
            self.context.delivery,
            f"template-use:{template.id}",
            self.context.api.record_template_use,
            template.id,
        )
        return template.content

    # ===========================================
    # Quick responses
    # ===========================================

    async def list_quick_responses(self, force: bool = False) -> List[QuickResponse]:
        async def fetcher():
            raw = await self.context.api.list_quick_responses(self.role)
            return _parse_items(QuickResponse, raw, "quick response")

        return await self.context.cache.get(("quick_responses", self.role), fetcher, force=force)

    async def create_quick_response(self, text: str, shortcut: str, category: str = "") -> QuickResponse:
        try:
            data = QuickResponseInput(text=text, shortcut=shortcut, category=category)
        except ValidationError as e:
            raise _validation_error(e) from e
        raw = await self.context.api.create_quick_response({**data.to_wire(), "role": self.role})
        self.context.cache.invalidate("quick_responses")
        try:
            return QuickResponse.model_validate(_unwrap(raw, "quickResponse"))
        except ValidationError as e:
            raise MalformedResponseError(f"create quick response: {e.error_count()} invalid field(s)") from e

    def expand_shortcut(self, text: str) -> Optional[str]:
        """Text of the cached quick response whose shortcut is ``text``, if any."""
        responses = self.context.cache.peek(("quick_responses", self.role)) or []
        wanted = text.strip().lower()
        for r in responses:
            if r.shortcut.lower() == wanted:
                return r.text
        return None
