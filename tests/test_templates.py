"""
Unit tests for templates and quick responses
"""
import pytest

from marketplace_chat.core.delivery_queue import DeliveryQueue
from marketplace_chat.core.errors import ChatValidationError
from marketplace_chat.models import ActorRole, ChatTemplate, QuickResponse
from marketplace_chat.services.templates import TemplateLibrary, filter_quick_responses, filter_templates

from conftest import make_api, make_context


TEMPLATES = [
    {"id": 1, "name": "Welcome", "content": "Thanks for reaching out", "category": "greeting", "tags": ["intro"]},
    {"id": 2, "name": "Quote", "content": "Please find our quotation", "category": "quotation", "tags": None},
    {"id": 3, "name": "Shipping ETA", "content": "Your order ships Monday", "category": "shipping"},
]


class TestLocalFilters:
    """Tests for client-side template search"""

    def setup_method(self):
        self.templates = [ChatTemplate.model_validate(t) for t in TEMPLATES]
        self.responses = [
            QuickResponse.model_validate({"id": 1, "text": "Thank you!", "shortcut": "/ty", "category": "acknowledgment"}),
            QuickResponse.model_validate({"id": 2, "text": "Could you share the specs?", "shortcut": "/specs", "category": "questions"}),
        ]

    def test_search_name_content_and_tags(self):
        assert [t.id for t in filter_templates(self.templates, "welcome")] == ["1"]
        assert [t.id for t in filter_templates(self.templates, "QUOTATION")] == ["2"]
        assert [t.id for t in filter_templates(self.templates, "intro")] == ["1"]

    def test_category_filter(self):
        assert [t.id for t in filter_templates(self.templates, category="shipping")] == ["3"]
        assert len(filter_templates(self.templates, category="all")) == 3

    def test_quick_response_filter(self):
        assert [r.id for r in filter_quick_responses(self.responses, "/SPE")] == ["2"]
        assert [r.id for r in filter_quick_responses(self.responses, category="acknowledgment")] == ["1"]


@pytest.mark.asyncio
class TestTemplateLibrary:
    """Tests for template CRUD through the API"""

    async def test_list_is_role_scoped_and_cached(self):
        api = make_api()
        api.list_templates.return_value = TEMPLATES
        library = TemplateLibrary(make_context(role=ActorRole.SUPPLIER, api=api))

        templates = await library.list_templates()
        await library.list_templates()

        assert [t.name for t in templates] == ["Welcome", "Quote", "Shipping ETA"]
        api.list_templates.assert_awaited_once_with("supplier")

    async def test_create_validates_then_invalidates(self):
        api = make_api()
        api.list_templates.return_value = TEMPLATES
        api.create_template.return_value = {"template": {"id": 4, "name": "Bye", "content": "Talk soon"}}
        ctx = make_context(role=ActorRole.SUPPLIER, api=api)
        library = TemplateLibrary(ctx)
        await library.list_templates()

        with pytest.raises(ChatValidationError):
            await library.create_template("  ", "Talk soon")
        api.create_template.assert_not_awaited()

        created = await library.create_template("Bye", "Talk soon", "closing", "farewell, short")
        assert created.id == "4"
        api.create_template.assert_awaited_once_with({
            "name": "Bye",
            "content": "Talk soon",
            "category": "closing",
            "tags": ["farewell", "short"],
            "role": "supplier",
        })
        assert not ctx.cache.is_fresh(("templates", "supplier"))

    async def test_update_and_delete(self):
        api = make_api()
        api.update_template.return_value = {"id": 1, "name": "Hi", "content": "Hello"}
        library = TemplateLibrary(make_context(api=api))

        updated = await library.update_template("1", "Hi", "Hello")
        await library.delete_template("1")

        assert updated.name == "Hi"
        api.update_template.assert_awaited_once_with("1", {"name": "Hi", "content": "Hello", "category": "", "tags": []})
        api.delete_template.assert_awaited_once_with("1")

    async def test_apply_records_usage_in_background(self):
        api = make_api()
        delivery = DeliveryQueue()
        await delivery.start()
        library = TemplateLibrary(make_context(api=api, delivery=delivery))
        template = ChatTemplate.model_validate(TEMPLATES[0])

        assert library.apply_template(template) == "Thanks for reaching out"
        api.record_template_use.assert_not_awaited()

        await delivery.stop(timeout=1.0)
        api.record_template_use.assert_awaited_once_with("1")

    async def test_quick_responses(self):
        api = make_api()
        api.list_quick_responses.return_value = [{"id": 1, "text": "Thank you!", "shortcut": "/ty"}]
        api.create_quick_response.return_value = {"id": 2, "text": "On it", "shortcut": "/on"}
        library = TemplateLibrary(make_context(role=ActorRole.ADMIN, api=api))

        await library.list_quick_responses()
        assert library.expand_shortcut("/TY") == "Thank you!"
        assert library.expand_shortcut("/nope") is None

        with pytest.raises(ChatValidationError):
            await library.create_quick_response("On it", "")
        created = await library.create_quick_response("On it", "/on")
        assert created.shortcut == "/on"
        api.create_quick_response.assert_awaited_once_with(
            {"text": "On it", "shortcut": "/on", "category": "", "role": "admin"}
        )
