"""
Structural checks on a parsed candidate.

Looks for the ``register(api)`` entry point and the registrations it
makes. Almost everything here is advisory; only shapes that cannot load at
all are reported as errors.
"""

import ast
from dataclasses import dataclass, field

from foundry.core.models import ArtifactKind

KNOWN_HOOK_EVENTS = (
    "before_agent_start",
    "before_tool_call",
    "after_tool_call",
    "agent_end",
)

ENTRY_POINT = "register"


@dataclass
class StructureReport:
    """Errors and warnings from the structural stage."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _attr_calls(tree: ast.AST, attr: str) -> list[ast.Call]:
    return [
        node
        for node in ast.walk(tree)
        if isinstance(node, ast.Call)
        and isinstance(node.func, ast.Attribute)
        and node.func.attr == attr
    ]


def _const_str(node: ast.AST | None) -> str | None:
    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        return node.value
    return None


def _dict_keys(node: ast.Dict) -> dict[str, ast.AST]:
    return {
        key.value: value
        for key, value in zip(node.keys, node.values)
        if isinstance(key, ast.Constant) and isinstance(key.value, str)
    }


def _check_tool_call(call: ast.Call, warnings: list[str]) -> None:
    keywords = {kw.arg: kw.value for kw in call.keywords if kw.arg}
    if any(kw.arg is None for kw in call.keywords):
        # **spread; contents unknown until runtime
        return

    if call.args:
        first = call.args[0]
        if not isinstance(first, ast.Dict):
            return
        fields = _dict_keys(first)
        fields.update(keywords)
    else:
        fields = keywords

    name = _const_str(fields.get("name")) or "<unnamed>"
    if "handler" not in fields:
        warnings.append(f"Tool '{name}' is missing a handler")


def _check_hook_call(call: ast.Call, warnings: list[str]) -> None:
    event_node = call.args[0] if call.args else None
    for kw in call.keywords:
        if kw.arg == "event":
            event_node = kw.value
    event = _const_str(event_node)
    if event is not None and event not in KNOWN_HOOK_EVENTS:
        warnings.append(f"Unknown hook event '{event}'")

    has_handler = len(call.args) >= 2 or any(kw.arg == "handler" for kw in call.keywords)
    if not has_handler:
        warnings.append(f"Hook '{event or '<dynamic>'}' is missing a handler")


def _can_exit(nodes: list[ast.AST], in_nested_loop: bool = False) -> bool:
    """Whether any node can leave the enclosing ``while`` loop."""
    for node in nodes:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef, ast.Lambda)):
            continue
        if isinstance(node, (ast.Return, ast.Raise)):
            return True
        if isinstance(node, ast.Break) and not in_nested_loop:
            return True
        nested = in_nested_loop or isinstance(node, (ast.While, ast.For, ast.AsyncFor))
        if _can_exit(list(ast.iter_child_nodes(node)), nested):
            return True
    return False


def _has_unbounded_loop(tree: ast.AST) -> bool:
    for node in ast.walk(tree):
        if not isinstance(node, ast.While):
            continue
        test = node.test
        if isinstance(test, ast.Constant) and bool(test.value) and not _can_exit(node.body):
            return True
    return False


def check_structure(source: str, tree: ast.Module, kind: ArtifactKind) -> StructureReport:
    """
    Check the shape of a parsed candidate for its artifact kind.

    Args:
        source: Raw candidate text
        tree: Parsed module of the same text
        kind: Kind of artifact the candidate claims to be

    Returns:
        StructureReport with load-blocking errors and advisory warnings
    """
    report = StructureReport()

    if not source.strip():
        report.errors.append("Source is empty")
        return report

    entry = next(
        (
            node
            for node in tree.body
            if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name == ENTRY_POINT
        ),
        None,
    )
    if entry is None:
        report.warnings.append(f"No {ENTRY_POINT}(api) entry point found")
    else:
        args = entry.args
        if not (args.posonlyargs or args.args or args.vararg):
            report.errors.append(f"{ENTRY_POINT}() must accept the registration handle")

    tool_calls = _attr_calls(tree, "register_tool")
    hook_calls = _attr_calls(tree, "on")
    for call in tool_calls:
        _check_tool_call(call, report.warnings)
    for call in hook_calls:
        _check_hook_call(call, report.warnings)

    if kind == ArtifactKind.EXTENSION and not tool_calls and not hook_calls:
        report.warnings.append("Extension doesn't register any tools or hooks")
    elif kind == ArtifactKind.TOOL and not tool_calls:
        report.warnings.append("Tool artifact doesn't register a tool")
    elif kind == ArtifactKind.HOOK and not hook_calls:
        report.warnings.append("Hook artifact doesn't register a hook")
    elif kind == ArtifactKind.SKILL and not tool_calls:
        report.warnings.append("Skill doesn't expose any tools")

    if _has_unbounded_loop(tree):
        report.warnings.append("Potential infinite loop detected")

    return report
