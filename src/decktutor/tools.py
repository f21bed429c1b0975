import inspect
import json
import re
import types
import typing
from typing import Any, Callable

from pydantic import BaseModel, Field

# Parameters filled in by the dispatcher, never by the model.
INJECTED_PARAMS = frozenset({"context"})

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


def _json_type(annotation) -> str:
    if annotation is inspect.Parameter.empty:
        return "string"
    origin = typing.get_origin(annotation)
    if origin in (typing.Union, types.UnionType):
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        return _json_type(args[0]) if args else "null"
    if origin is not None:
        annotation = origin
    return _JSON_TYPES.get(annotation, "string")


def _parse_param_descriptions(func: Callable) -> dict[str, str]:
    """Read per-parameter descriptions from a Google-style ``Args:`` block."""
    doc = inspect.getdoc(func) or ""
    descriptions: dict[str, str] = {}
    in_args = False
    current = None
    for line in doc.splitlines():
        stripped = line.strip()
        if stripped in ("Args:", "Arguments:", "Parameters:"):
            in_args = True
            continue
        if not in_args:
            continue
        if not stripped:
            current = None
            continue
        if not line.startswith((" ", "\t")):
            # Next section header, e.g. "Returns:"
            break
        match = re.match(r"^(\w+)\s*(\([^)]*\))?\s*:\s*(.*)$", stripped)
        if match:
            current = match.group(1)
            descriptions[current] = match.group(3).strip()
        elif current is not None:
            descriptions[current] = f"{descriptions[current]} {stripped}".strip()
    return descriptions


def _summary(func: Callable) -> str:
    doc = inspect.getdoc(func) or ""
    return doc.split("\n\n", 1)[0].replace("\n", " ").strip()


def _build_parameters_schema(func: Callable) -> tuple[dict, list[str]]:
    signature = inspect.signature(func, eval_str=True)
    descriptions = _parse_param_descriptions(func)
    properties: dict[str, dict[str, str]] = {}
    required: list[str] = []
    for param_name, param in signature.parameters.items():
        if param_name in INJECTED_PARAMS:
            continue
        prop = {"type": _json_type(param.annotation)}
        if param_name in descriptions:
            prop["description"] = descriptions[param_name]
        properties[param_name] = prop
        if param.default is inspect.Parameter.empty:
            required.append(param_name)
    schema = {
        "type": "object",
        "properties": properties,
        "required": required,
        "additionalProperties": False,
    }
    return schema, required


class Tool(BaseModel):
    """A function the model may call, plus its OpenAI function schema."""

    func: Callable = Field(exclude=True)
    name: str
    description: str = ""
    parameters: dict = Field(default_factory=dict)
    model_config = {"arbitrary_types_allowed": True}

    @classmethod
    def from_function(cls, func: Callable, name: str | None = None) -> "Tool":
        parameters, _ = _build_parameters_schema(func)
        return cls(
            func=func,
            name=name or func.__name__,
            description=_summary(func),
            parameters=parameters,
        )

    def model_dump(self, **kwargs):
        """Return the JSON schema instead of internal attributes"""
        return self.get_schema()

    def model_dump_json(self, **kwargs):
        return json.dumps(self.get_schema())

    def get_schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    @property
    def argument_names(self) -> set[str]:
        return set(self.parameters.get("properties", {}))

    @property
    def wants_context(self) -> bool:
        return "context" in inspect.signature(self.func).parameters

    async def __call__(self, *args, **kwargs) -> Any:
        result = self.func(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result


def tool(func: Callable | None = None, *, name: str | None = None):
    """Turn a function into a :class:`Tool`.

    Usable bare (``@tool``) or with an explicit wire name
    (``@tool(name="semanticSearchAmongDecks")``).  The summary line of the
    docstring becomes the tool description and the ``Args:`` block the
    parameter descriptions.  A ``context`` parameter is injected at call
    time and hidden from the schema.
    """
    if func is None:
        return lambda f: Tool.from_function(f, name=name)
    return Tool.from_function(func, name=name)
