import functools
import inspect
import json
import logging
import re
from collections.abc import Iterable
from typing import Any, Callable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Parameters filled in by the runner, never shown to the model.
_INJECTED_PARAMS = frozenset({"context"})

_JSON_TYPES = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    tuple: "array",
    set: "array",
    dict: "object",
    type(None): "null",
}


class ToolNotFoundError(LookupError):
    """The model asked for a function that is not registered."""


class ToolDispatchError(RuntimeError):
    """A registered tool raised while executing."""

    def __init__(self, tool_name: str, cause: BaseException):
        super().__init__(f"Error calling {tool_name}: {cause}")
        self.tool_name = tool_name
        self.cause = cause


class ToolCallResult(BaseModel):
    tool_name: str
    output: Any


def _json_type(annotation: Any) -> str:
    if annotation is inspect.Parameter.empty:
        return "string"
    origin = getattr(annotation, "__origin__", None)
    return _JSON_TYPES.get(origin or annotation, "string")


def _parse_param_descriptions(func: Callable) -> dict[str, str]:
    """Read parameter descriptions from a Google, reST or NumPy docstring."""
    doc = inspect.getdoc(func)
    if not doc:
        return {}
    lines = doc.splitlines()
    descriptions: dict[str, str] = {}

    # reST: ":param name: description"
    for line in lines:
        match = re.match(r"\s*:param\s+(?:\w+\s+)?(\w+):\s*(.*)", line)
        if match:
            descriptions[match.group(1)] = match.group(2).strip()
    if descriptions:
        return descriptions

    # Google: "Args:" followed by "name (type): description"
    for i, line in enumerate(lines):
        if line.strip() in ("Args:", "Arguments:", "Parameters:"):
            current = None
            indent = None
            for body in lines[i + 1:]:
                if not body.strip():
                    continue
                body_indent = len(body) - len(body.lstrip())
                if indent is None:
                    indent = body_indent
                if body_indent < indent:
                    break
                match = re.match(r"(\w+)\s*(?:\([^)]*\))?\s*:\s*(.*)", body.strip())
                if body_indent == indent and match:
                    current = match.group(1)
                    descriptions[current] = match.group(2).strip()
                elif current is not None:
                    descriptions[current] += "\n" + body.strip()
            return descriptions

    # NumPy: "Parameters" underlined with dashes
    for i, line in enumerate(lines[:-1]):
        if line.strip() == "Parameters" and set(lines[i + 1].strip()) == {"-"}:
            current = None
            for body in lines[i + 2:]:
                if not body.strip():
                    continue
                if not body.startswith((" ", "\t")):
                    match = re.match(r"(\w+)\s*:", body)
                    if not match:
                        break
                    current = match.group(1)
                    descriptions[current] = ""
                elif current is not None:
                    sep = "\n" if descriptions[current] else ""
                    descriptions[current] += sep + body.strip()
            return descriptions
    return descriptions


def _build_parameters_schema(func: Callable) -> tuple[dict, list[str]]:
    """Build the JSON schema for ``func``'s parameters from its signature."""
    descriptions = _parse_param_descriptions(func)
    properties = {}
    required = []
    for name, param in inspect.signature(func).parameters.items():
        if name in _INJECTED_PARAMS:
            continue
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        properties[name] = {
            "type": _json_type(param.annotation),
            "description": descriptions.get(name, ""),
        }
        if param.default is inspect.Parameter.empty:
            required.append(name)
    schema = {"type": "object", "properties": properties, "required": required}
    return schema, required


def _summary(func: Callable) -> str:
    doc = inspect.getdoc(func) or ""
    return doc.split("\n\n", 1)[0].strip()


class Tool(BaseModel):
    """A Python function the model may call.

    Create one with the :func:`tool` decorator.  ``model_dump()`` returns
    the function declaration sent to the backend.
    """

    model_config = {"arbitrary_types_allowed": True}

    func: Callable = Field(exclude=True)
    name: str
    description: str = ""
    parameters_schema: dict

    @property
    def wants_context(self) -> bool:
        return "context" in inspect.signature(self.func).parameters

    def model_dump(self, **kwargs):
        """Return the function declaration instead of the model fields."""
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters_schema,
        }

    def model_dump_json(self, **kwargs):
        return json.dumps(self.model_dump())

    def bind(self, **bound: Any) -> "Tool":
        """Pre-fill arguments and hide them from the model."""
        properties = {
            k: v for k, v in self.parameters_schema["properties"].items() if k not in bound
        }
        required = [r for r in self.parameters_schema["required"] if r not in bound]
        func = functools.partial(self.func, **bound)
        return Tool(
            func=func,
            name=self.name,
            description=self.description,
            parameters_schema={**self.parameters_schema, "properties": properties, "required": required},
        )

    async def __call__(self, **kwargs) -> ToolCallResult:
        output = self.func(**kwargs)
        if inspect.isawaitable(output):
            output = await output
        return ToolCallResult(tool_name=self.name, output=output)


def tool(func: Callable | None = None, *, name: str | None = None, description: str | None = None):
    """Turn a function into a :class:`Tool`.

    Works bare (``@tool``) or with overrides (``@tool(name=...)``).  A
    ``context`` parameter is left out of the schema and filled with the
    runner's :class:`~turnstream.context.Context` at call time.
    """

    def wrap(f: Callable) -> Tool:
        schema, _ = _build_parameters_schema(f)
        return Tool(
            func=f,
            name=name or f.__name__,
            description=description if description is not None else _summary(f),
            parameters_schema=schema,
        )

    if func is not None:
        return wrap(func)
    return wrap


def serialize_output(output: Any) -> str:
    """Serialize a tool's result for the ``function_call_output`` item."""
    return json.dumps(output, default=str)


class ToolRegistry:
    """Named-function dispatch for the tools of one persona.

    Args:
        tools: Functions the model may call.
        hosted_tools: Declarations of tools the backend runs itself (for
            example ``{"type": "web_search_preview"}``); sent as-is.
    """

    def __init__(self, tools: Iterable[Tool] = (), hosted_tools: Iterable[dict] = ()):
        self._tools: dict[str, Tool] = {}
        for t in tools:
            if t.name in self._tools:
                raise ValueError(f"Duplicate tool name: '{t.name}'")
            self._tools[t.name] = t
        self.hosted_tools = list(hosted_tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def declarations(self) -> list[dict]:
        return [t.model_dump() for t in self._tools.values()] + list(self.hosted_tools)

    async def dispatch(self, name: str | None, arguments: dict[str, Any], context: Any = None) -> Any:
        """Call the tool ``name`` with ``arguments``.

        Raises:
            ToolNotFoundError: If no tool is registered under ``name``.
            ToolDispatchError: If the tool raised.
        """
        tool_obj = self._tools.get(name or "")
        if tool_obj is None:
            logger.warning(f"Tool not found: {name}")
            raise ToolNotFoundError(f"Tool '{name}' not found")

        params = dict(arguments)
        if tool_obj.wants_context:
            params["context"] = context
        logger.info(f"Calling {name} with {arguments}")
        try:
            result = await tool_obj(**params)
        except Exception as e:
            logger.error(f"Tool {name} raised: {e}")
            raise ToolDispatchError(tool_obj.name, e) from e
        return result.output
