"""
Code Generator - renders artifact definitions into source text.

Pure data-to-text: no validation, no I/O. String values are embedded as
Python literals so names and descriptions cannot alter the generated
syntax; opaque handler bodies are re-indented into their functions.
"""

import json
import keyword
import re
import textwrap

from foundry.core.models import ArtifactKind
from foundry.generator.models import (
    ArtifactDefinition,
    EndpointSpec,
    HookSpec,
    RenderedArtifact,
    ToolSpec,
)
from foundry.generator.templates import (
    HOOK_HANDLER_TEMPLATE,
    HOOK_REGISTRATION_TEMPLATE,
    MODULE_TEMPLATE,
    SKILL_DOC_TEMPLATE,
    SKILL_HANDLER_TEMPLATE,
    SKILL_METHOD_TEMPLATE,
    SKILL_TEMPLATE,
    TOOL_HANDLER_TEMPLATE,
    TOOL_REGISTRATION_TEMPLATE,
    render_template,
)

ENTRY_FILES = {
    ArtifactKind.EXTENSION: "__init__.py",
    ArtifactKind.TOOL: "tool.py",
    ArtifactKind.HOOK: "hook.py",
    ArtifactKind.SKILL: "api.py",
}

_PATH_PARAM = re.compile(r"\{([^{}]+)\}")
_RESERVED_ARGS = {"self", "params", "body", "context", "client"}


def _literal(value: object) -> str:
    return repr(value)


def _identifier(text: str) -> str:
    ident = re.sub(r"[^A-Za-z0-9]+", "_", text).strip("_").lower()
    if not ident or ident[0].isdigit():
        ident = f"_{ident}"
    return ident


def _param_name(text: str) -> str:
    name = _identifier(text).lstrip("_") or "param"
    if name[0].isdigit() or keyword.iskeyword(name) or name in _RESERVED_ARGS:
        name = f"{name}_" if not name[0].isdigit() else f"p_{name}"
    return name


def to_pascal_case(text: str) -> str:
    """``my-weather api`` -> ``MyWeatherApi``."""
    return "".join(part[:1].upper() + part[1:] for part in re.split(r"[^A-Za-z0-9]+", text) if part)


def to_method_name(endpoint: EndpointSpec) -> str:
    """``GET /users/{id}`` -> ``get_users_by_id``."""
    parts = [endpoint.method.lower()]
    for segment in endpoint.path.strip("/").split("/"):
        if not segment:
            continue
        param = _PATH_PARAM.fullmatch(segment)
        if param:
            parts.extend(["by", _identifier(param.group(1)).lstrip("_")])
        else:
            parts.append(_identifier(segment).lstrip("_"))
    return "_".join(p for p in parts if p)


def _body(code: str) -> str:
    text = textwrap.dedent(code).strip("\n")
    if not text.strip():
        text = "return None"
    return textwrap.indent(text, "    ")


class CodeGenerator:
    """Renders ArtifactDefinitions into module source files."""

    def render(self, definition: ArtifactDefinition) -> RenderedArtifact:
        """
        Render a definition into its files.

        Returns:
            RenderedArtifact whose entry point is the module to validate
        """
        if definition.kind == ArtifactKind.SKILL:
            return self._render_skill(definition)

        entry = ENTRY_FILES[definition.kind]
        files = {entry: self._render_module(definition)}
        if definition.kind == ArtifactKind.EXTENSION:
            files["plugin.json"] = self._render_plugin_json(definition, entry)
        return RenderedArtifact(entry_point=entry, files=files)

    def _render_module(self, definition: ArtifactDefinition) -> str:
        handlers: list[str] = []
        registrations: list[str] = []

        for tool in definition.tools:
            func = f"_tool_{tool.name}"
            handlers.append(self._tool_handler(func, tool))
            registrations.append(self._tool_registration(func, tool))

        for index, hook in enumerate(definition.hooks):
            func = f"_on_{_identifier(hook.event).lstrip('_')}_{index}"
            handlers.append(self._hook_handler(func, hook))
            registrations.append(
                render_template(
                    HOOK_REGISTRATION_TEMPLATE,
                    {"EVENT": _literal(hook.event), "FUNC": func},
                )
            )

        return render_template(
            MODULE_TEMPLATE,
            {
                "KIND": definition.kind.value,
                "ID": _literal(definition.id),
                "NAME": _literal(definition.name),
                "DESCRIPTION": _literal(definition.description),
                "HANDLERS": "".join(handlers),
                "REGISTRATIONS": "".join(registrations) or "    pass\n",
            },
        )

    def _tool_handler(self, func: str, tool: ToolSpec) -> str:
        return render_template(TOOL_HANDLER_TEMPLATE, {"FUNC": func, "BODY": _body(tool.code)})

    def _hook_handler(self, func: str, hook: HookSpec) -> str:
        return render_template(HOOK_HANDLER_TEMPLATE, {"FUNC": func, "BODY": _body(hook.code)})

    def _tool_registration(self, func: str, tool: ToolSpec) -> str:
        return render_template(
            TOOL_REGISTRATION_TEMPLATE,
            {
                "NAME": _literal(tool.name),
                "LABEL": _literal(tool.label or tool.name),
                "DESCRIPTION": _literal(tool.description),
                "PARAMETERS": _literal(tool.input_schema()),
                "FUNC": func,
            },
        )

    def _render_plugin_json(self, definition: ArtifactDefinition, entry: str) -> str:
        manifest = {
            "id": definition.id,
            "name": definition.name,
            "description": definition.description,
            "version": "1.0.0",
            "entry": entry,
            "tools": definition.tool_names(),
            "hooks": definition.hook_events(),
        }
        return json.dumps(manifest, indent=2) + "\n"

    def _render_skill(self, definition: ArtifactDefinition) -> RenderedArtifact:
        class_name = f"{to_pascal_case(definition.name) or 'Api'}Client"
        if not class_name[0].isalpha():
            class_name = f"Api{class_name}"

        methods: list[str] = []
        registrations: list[str] = []
        seen: dict[str, int] = {}

        for endpoint in definition.endpoints:
            method = to_method_name(endpoint)
            seen[method] = seen.get(method, 0) + 1
            if seen[method] > 1:
                method = f"{method}_{seen[method]}"

            path_params = [_param_name(p) for p in _PATH_PARAM.findall(endpoint.path)]
            methods.append(
                render_template(
                    SKILL_METHOD_TEMPLATE,
                    {
                        "METHOD": method,
                        "ARGS": "".join(f", {p}" for p in path_params),
                        "HTTP_METHOD": _literal(endpoint.method),
                        "PATH_EXPR": self._path_expression(endpoint.path),
                    },
                )
            )

            func = f"_{method}"
            registrations.append(
                render_template(
                    SKILL_HANDLER_TEMPLATE,
                    {
                        "FUNC": func,
                        "METHOD": method,
                        "CALL_ARGS": "".join(f"params[{_literal(p)}], " for p in path_params),
                    },
                )
            )
            registrations.append(
                render_template(
                    TOOL_REGISTRATION_TEMPLATE,
                    {
                        "NAME": _literal(method),
                        "LABEL": _literal(f"{endpoint.method} {endpoint.path}"),
                        "DESCRIPTION": _literal(endpoint.description or f"{endpoint.method} {endpoint.path}"),
                        "PARAMETERS": _literal(self._endpoint_schema(path_params)),
                        "FUNC": func,
                    },
                )
            )

        source = render_template(
            SKILL_TEMPLATE,
            {
                "ID": _literal(definition.id),
                "NAME": _literal(definition.name),
                "DESCRIPTION": _literal(definition.description),
                "BASE_URL": _literal(definition.base_url or ""),
                "CLASS": class_name,
                "METHODS": "".join(methods),
                "REGISTRATIONS": "".join(registrations) or "    pass\n",
            },
        )

        endpoint_lines = [
            f"- `{e.method} {e.path}` → `{to_method_name(e)}`"
            + (f": {e.description}" if e.description else "")
            for e in definition.endpoints
        ]
        doc = render_template(
            SKILL_DOC_TEMPLATE,
            {
                "NAME": definition.name,
                "DESCRIPTION": definition.description,
                "BASE_URL": definition.base_url or "",
                "ENDPOINTS": "\n".join(endpoint_lines) or "_none_",
            },
        )
        return RenderedArtifact(entry_point="api.py", files={"api.py": source, "SKILL.md": doc})

    @staticmethod
    def _path_expression(path: str) -> str:
        pieces: list[str] = []
        last = 0
        for match in _PATH_PARAM.finditer(path):
            if match.start() > last:
                pieces.append(_literal(path[last:match.start()]))
            name = _param_name(match.group(1))
            pieces.append(f'urllib.parse.quote(str({name}), safe="")')
            last = match.end()
        if last < len(path):
            pieces.append(_literal(path[last:]))
        return " + ".join(pieces) or _literal("/")

    @staticmethod
    def _endpoint_schema(path_params: list[str]) -> dict:
        properties = {p: {"type": "string", "description": f"Path parameter {p}"} for p in path_params}
        properties["query"] = {"type": "object", "description": "Query string parameters"}
        properties["body"] = {"type": "object", "description": "JSON request body"}
        return {"type": "object", "properties": properties, "required": list(path_params)}


def crystallized_definition(
    pattern_id: str,
    subject: str,
    error: str,
    resolution: str,
) -> ArtifactDefinition:
    """
    Build the permanent artifact for a learned resolution.

    The artifact contributes an ``after_tool_call`` hook that returns the
    resolution as a hint whenever a matching error recurs, and a lookup tool
    returning the same resolution on demand.
    """
    slug = _identifier(subject).strip("_")[:40] or "pattern"
    suffix = _identifier(pattern_id).strip("_")[-8:]
    signature = error.strip().splitlines()[0][:200] if error.strip() else ""

    hook_code = f"""
        error = str((event or {{}}).get("error") or "")
        if {_literal(signature.lower())} in error.lower():
            return {{"hint": {_literal(resolution)}, "learned_from": {_literal(pattern_id)}}}
        return None
    """
    tool_code = f"""
        return {{"content": [{{"type": "text", "text": {_literal(resolution)}}}]}}
    """
    return ArtifactDefinition(
        id=f"learned-{slug}-{suffix}".replace("_", "-")[:64],
        kind=ArtifactKind.EXTENSION,
        name=f"Learned fix for {subject}",
        description=f"Resolution learned for '{signature}' in {subject}: {resolution}",
        tools=[
            ToolSpec(
                name=f"learned_{slug}"[:60],
                description=f"Known fix when {subject} fails with '{signature}'",
                code=tool_code,
            )
        ],
        hooks=[HookSpec(event="after_tool_call", code=hook_code)],
        source="crystallization",
    )
