import json
from datetime import date

import pytest

from turnstream.tools import (
    Tool,
    ToolCallResult,
    ToolDispatchError,
    ToolNotFoundError,
    ToolRegistry,
    _build_parameters_schema,
    _parse_param_descriptions,
    serialize_output,
    tool,
)


# ---------------------------------------------------------------------------
# Schema generation (_build_parameters_schema)
# ---------------------------------------------------------------------------


class TestBuildParametersSchema:
    def test_python_types_map_to_json_schema_types(self):
        def func(a: str, b: int, c: float, d: bool, e: list, f: dict, g: list[int]):
            pass

        schema, _ = _build_parameters_schema(func)
        types = {k: v["type"] for k, v in schema["properties"].items()}
        assert types == {
            "a": "string",
            "b": "integer",
            "c": "number",
            "d": "boolean",
            "e": "array",
            "f": "object",
            "g": "array",
        }

    def test_context_param_excluded(self):
        def func(context, query: str):
            pass

        schema, _ = _build_parameters_schema(func)
        assert list(schema["properties"]) == ["query"]

    def test_optional_params_not_required(self):
        def func(name: str, greeting: str = "hi"):
            pass

        schema, required = _build_parameters_schema(func)
        assert required == ["name"]
        assert schema["required"] == ["name"]

    def test_var_args_skipped(self):
        def func(x: int, *args, **kwargs):
            pass

        schema, _ = _build_parameters_schema(func)
        assert list(schema["properties"]) == ["x"]


# ---------------------------------------------------------------------------
# Docstring param description parsing (_parse_param_descriptions)
# ---------------------------------------------------------------------------


class TestParseParamDescriptions:
    def test_google_style(self):
        def func(city, days):
            """Forecast.

            Args:
                city (str): City name.
                days: Number of days,
                    counted from today.
            """

        assert _parse_param_descriptions(func) == {
            "city": "City name.",
            "days": "Number of days,\ncounted from today.",
        }

    def test_rest_style(self):
        def func(city):
            """Forecast.

            :param str city: City name.
            """

        assert _parse_param_descriptions(func) == {"city": "City name."}

    def test_numpy_style(self):
        def func(city, days):
            """Forecast.

            Parameters
            ----------
            city : str
                City name.
            days : int
                Number of days.

            Returns
            -------
            dict
            """

        assert _parse_param_descriptions(func) == {"city": "City name.", "days": "Number of days."}

    def test_no_docstring(self):
        def func(city):
            pass

        assert _parse_param_descriptions(func) == {}


# ---------------------------------------------------------------------------
# Tool
# ---------------------------------------------------------------------------


class TestTool:
    def test_decorator_builds_declaration(self, get_weather):
        assert get_weather.model_dump() == {
            "type": "function",
            "name": "get_weather",
            "description": "Look up the weather.",
            "parameters": {
                "type": "object",
                "properties": {"city": {"type": "string", "description": "City name."}},
                "required": ["city"],
            },
        }
        assert json.loads(get_weather.model_dump_json())["name"] == "get_weather"

    def test_decorator_overrides(self):
        @tool(name="lookup", description="Custom.")
        def func(q: str):
            """Ignored."""
            return q

        assert func.name == "lookup"
        assert func.description == "Custom."

    @pytest.mark.asyncio
    async def test_sync_and_async_calls(self):
        @tool
        def sync_add(a: int, b: int):
            return a + b

        @tool
        async def async_add(a: int, b: int):
            return a + b

        assert await sync_add(a=1, b=2) == ToolCallResult(tool_name="sync_add", output=3)
        assert (await async_add(a=1, b=2)).output == 3

    @pytest.mark.asyncio
    async def test_bind_hides_parameters(self):
        @tool
        def greet(greeting: str, name: str):
            return f"{greeting} {name}"

        bound = greet.bind(greeting="Hello")
        assert list(bound.parameters_schema["properties"]) == ["name"]
        assert bound.parameters_schema["required"] == ["name"]
        assert (await bound(name="bard")).output == "Hello bard"

    def test_wants_context(self, context_tool, get_weather):
        assert context_tool.wants_context
        assert not get_weather.wants_context
        assert "context" not in context_tool.parameters_schema["properties"]


# ---------------------------------------------------------------------------
# ToolRegistry
# ---------------------------------------------------------------------------


class TestToolRegistry:
    def test_declarations_include_hosted_tools(self, get_weather):
        registry = ToolRegistry([get_weather], hosted_tools=[{"type": "web_search_preview"}])
        declarations = registry.declarations()
        assert [d.get("name") for d in declarations] == ["get_weather", None]
        assert declarations[1] == {"type": "web_search_preview"}
        assert "get_weather" in registry
        assert len(registry) == 1

    def test_duplicate_names_rejected(self, get_weather):
        with pytest.raises(ValueError, match="Duplicate"):
            ToolRegistry([get_weather, get_weather])

    @pytest.mark.asyncio
    async def test_dispatch(self, get_weather):
        registry = ToolRegistry([get_weather])
        assert await registry.dispatch("get_weather", {"city": "NYC"}) == {"city": "NYC", "forecast": "sunny"}

    @pytest.mark.asyncio
    async def test_dispatch_injects_context(self, context_tool):
        registry = ToolRegistry([context_tool])

        class FakeContext:
            persona_id = "bard"

        assert await registry.dispatch("whoami", {}, context=FakeContext()) == "bard"

    @pytest.mark.asyncio
    async def test_dispatch_unknown_tool(self):
        with pytest.raises(ToolNotFoundError, match="not found"):
            await ToolRegistry().dispatch("nope", {})

    @pytest.mark.asyncio
    async def test_dispatch_wraps_tool_errors(self, broken_tool):
        registry = ToolRegistry([broken_tool])
        with pytest.raises(ToolDispatchError) as exc:
            await registry.dispatch("broken", {"city": "NYC"})
        assert exc.value.tool_name == "broken"
        assert isinstance(exc.value.cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_dispatch_wraps_bad_arguments(self, get_weather):
        with pytest.raises(ToolDispatchError):
            await ToolRegistry([get_weather]).dispatch("get_weather", {"town": "NYC"})


def test_serialize_output():
    assert serialize_output("sunny") == '"sunny"'
    assert json.loads(serialize_output({"items": [1, 2]})) == {"items": [1, 2]}
    assert serialize_output(date(2024, 1, 2)) == '"2024-01-02"'


def test_tool_is_pydantic_model(get_weather):
    assert isinstance(get_weather, Tool)
