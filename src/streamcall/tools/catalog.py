from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Literal

ParamKind = Literal["string", "integer", "object", "any"]


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Catalog metadata for one tool. The tool itself lives behind a ToolInvoker."""

    name: str
    description: str = ""
    # None means the tool declared nothing; plan mode treats it as unsafe.
    plan_safe: bool | None = None
    required_params: dict[str, ParamKind] = field(default_factory=dict)
    status_message: str | None = None
    source: str = "builtin"


BUILTIN_TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec("get_code", "Read the code in the active editor", plan_safe=True, status_message="Reading code..."),
    ToolSpec(
        "insert_code",
        "Insert code at the cursor position",
        plan_safe=False,
        required_params={"code": "string"},
        status_message="Inserting code...",
    ),
    ToolSpec(
        "replace_code",
        "Replace the selection or a line/column range",
        plan_safe=False,
        required_params={"code": "string"},
        status_message="Updating code...",
    ),
    ToolSpec("format_code", "Format the active document", plan_safe=False, status_message="Formatting code..."),
    ToolSpec("list_libraries", "List open libraries", plan_safe=True, status_message="Listing libraries..."),
    ToolSpec(
        "get_library_content",
        "Read one library by id",
        plan_safe=True,
        required_params={"libraryId": "string"},
        status_message="Loading library...",
    ),
    ToolSpec(
        "search_code",
        "Search the open libraries",
        plan_safe=True,
        required_params={"query": "string"},
        status_message="Searching code...",
    ),
    ToolSpec(
        "get_cursor_position",
        "Current cursor line and column",
        plan_safe=True,
        status_message="Getting cursor position...",
    ),
    ToolSpec("get_selection", "Currently selected text", plan_safe=True, status_message="Getting selection..."),
    ToolSpec(
        "navigate_to_line",
        "Move the cursor to a line",
        plan_safe=True,
        required_params={"line": "integer"},
        status_message="Navigating...",
    ),
    ToolSpec("create_library", "Create a new library", plan_safe=False, status_message="Creating library..."),
    ToolSpec(
        "validate_cql",
        "Validate CQL syntax and semantics",
        plan_safe=False,
        required_params={"cql": "string"},
    ),
    ToolSpec(
        "format_cql",
        "Format CQL text and return the result without touching the editor",
        plan_safe=False,
        required_params={"cql": "string"},
    ),
    # FHIR clipboard
    ToolSpec(
        "list_clipboard",
        "List or query clipboard items",
        plan_safe=True,
        status_message="Listing clipboard...",
    ),
    ToolSpec(
        "add_to_clipboard",
        "Add a FHIR resource or Coding to the clipboard",
        plan_safe=False,
        required_params={"payload": "object"},
        status_message="Adding to clipboard...",
    ),
    ToolSpec(
        "remove_from_clipboard",
        "Remove one clipboard item by id",
        plan_safe=False,
        required_params={"id": "string"},
    ),
    ToolSpec("clear_clipboard", "Clear all clipboard items", plan_safe=False),
)


class ToolCatalog:
    """Built-in tools plus any remote tools discovered at runtime."""

    def __init__(self, specs: Iterable[ToolSpec] = ()) -> None:
        self._specs: dict[str, ToolSpec] = {}
        self.extend(specs)

    @classmethod
    def default(cls, *, plan_safe: Iterable[str] = (), plan_blocked: Iterable[str] = ()) -> "ToolCatalog":
        catalog = cls(BUILTIN_TOOLS)
        catalog.extend(ToolSpec(name, plan_safe=True, source="config") for name in plan_safe)
        catalog.extend(ToolSpec(name, plan_safe=False, source="config") for name in plan_blocked)
        return catalog

    def register(self, spec: ToolSpec) -> None:
        existing = self._specs.get(spec.name)
        if existing is not None and spec.plan_safe is None:
            # Keep a safety flag declared elsewhere (config) when discovery has none.
            spec = ToolSpec(
                name=spec.name,
                description=spec.description or existing.description,
                plan_safe=existing.plan_safe,
                required_params=spec.required_params or existing.required_params,
                status_message=spec.status_message or existing.status_message,
                source=spec.source,
            )
        self._specs[spec.name] = spec

    def extend(self, specs: Iterable[ToolSpec]) -> None:
        for spec in specs:
            self.register(spec)

    def get(self, name: str) -> ToolSpec | None:
        return self._specs.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def specs(self) -> list[ToolSpec]:
        return list(self._specs.values())

    def names(self) -> list[str]:
        return list(self._specs.keys())

    def status_messages(self) -> dict[str, str]:
        return {s.name: s.status_message for s in self._specs.values() if s.status_message}
