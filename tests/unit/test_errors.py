from support_agent.errors import ConfigurationError, ToolExecutionError


def test_configuration_error_carries_provider_and_field() -> None:
    error = ConfigurationError("Key missing", provider="google", field="GOOGLE_API_KEY")

    assert error.details == {"provider": "google", "field": "GOOGLE_API_KEY"}
    assert str(error).startswith("Key missing | Details:")


def test_tool_execution_error_names_tool() -> None:
    error = ToolExecutionError("search_knowledge_base", "Tool failed")

    assert error.tool_name == "search_knowledge_base"
    assert str(error) == "Tool failed | Details: {'tool': 'search_knowledge_base'}"
