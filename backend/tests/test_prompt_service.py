import pytest

from app.services import prompt_app_service
from app.services.prompt_app_service import PromptAppService
from domain.errors import MissingVariablesError, NotATemplateError, NotFoundError

def test_get_prompt_not_found(service):
    with pytest.raises(NotFoundError):
        service.get_prompt("missing")
    with pytest.raises(NotFoundError) as exc_info:
        service.get_prompt("missing", 2)
    assert exc_info.value.version == 2

def test_apply_template(service):
    prompt = service.create_prompt({
        "name": "Welcome",
        "content": "Hello {{name}}, welcome to {{platform}}!",
        "is_template": True,
    })
    result = service.apply_template(prompt.id, {"name": "Alice", "platform": "PM", "extra": "ignored"})
    assert result == "Hello Alice, welcome to PM!"

def test_apply_template_missing_variables(service):
    prompt = service.create_prompt({"name": "W", "content": "{{a}} {{b}}", "is_template": True})
    with pytest.raises(MissingVariablesError) as exc_info:
        service.apply_template(prompt.id, {})
    assert exc_info.value.names == ["a", "b"]

def test_apply_template_requires_template(service):
    prompt = service.create_prompt({"name": "Plain", "content": "Hello {{name}}"})
    with pytest.raises(NotATemplateError):
        service.apply_template(prompt.id, {"name": "x"})

def test_apply_template_not_found(service):
    with pytest.raises(NotFoundError):
        service.apply_template("missing", {})

def test_get_stats(service):
    service.create_prompt({"name": "A", "content": "c", "category": "work", "tags": ["x", "y"]})
    service.create_prompt({"name": "B", "content": "{{v}}", "is_template": True, "category": "work", "tags": ["x"]})
    service.create_prompt({"name": "C", "content": "c"})

    stats = service.get_stats()
    assert stats.total == 3
    assert stats.templates == 1
    assert stats.regular == 2
    assert stats.categories == {"work": 2}
    assert stats.tags == {"x": 2, "y": 1}

def test_get_stats_empty(service):
    stats = service.get_stats()
    assert stats.total == 0
    assert stats.categories == {}
    assert stats.tags == {}

def test_search_prompts(service):
    a = service.create_prompt({"name": "Code Review", "content": "Review this"})
    b = service.create_prompt({"name": "Summary", "content": "Summarize", "description": "Short CODE digest"})
    c = service.create_prompt({"name": "Other", "content": "x", "tags": ["Codegen"]})
    service.create_prompt({"name": "Unrelated", "content": "nothing"})

    assert {p.id for p in service.search_prompts("code")} == {a.id, b.id, c.id}
    assert {p.id for p in service.search_prompts("SUMMAR")} == {b.id}
    assert service.search_prompts("zzz") == []

def test_scan_reads_every_page(service, mocker):
    mocker.patch.object(prompt_app_service, "SCAN_PAGE_SIZE", 2)
    for i in range(5):
        service.create_prompt({"name": f"P{i}", "content": "c"})
    assert service.get_stats().total == 5

def test_versions_through_service(service):
    prompt = service.create_prompt({"name": "V", "content": "1"})
    service.update_prompt(prompt.id, {"content": "2"}, expected_version=1)
    assert service.list_prompt_versions(prompt.id) == [1, 2]
    assert service.get_prompt(prompt.id, 1).content == "1"
    assert service.delete_prompt(prompt.id) is True
    assert service.delete_prompt(prompt.id) is False

def test_service_delegates_to_repository(mocker):
    repository = mocker.MagicMock()
    repository.health_check.return_value = False
    service = PromptAppService(repository)

    assert service.health_check() is False
    service.list_prompts({"limit": 5})
    repository.list.assert_called_once_with({"limit": 5})
