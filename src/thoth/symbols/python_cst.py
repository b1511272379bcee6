from __future__ import annotations

import libcst as cst
from libcst.metadata import MetadataWrapper, PositionProvider

from thoth.exceptions import SymbolParseError
from thoth.symbols.capabilities import Capture, select


def _flatten(text: str) -> str:
    return " ".join(text.split())


_ACCESSORS = ("getter", "setter", "deleter")


def _redeclarable(name: str, decorators: tuple[str, ...]) -> bool:
    """Overload stubs and property accessors legally reuse a name in one scope."""
    for decorator in decorators:
        head = decorator.split("(", 1)[0].strip()
        if head == "overload" or head.endswith(".overload"):
            return True
        if any(head == f"{name}.{accessor}" for accessor in _ACCESSORS):
            return True
    return False


class _DeclarationCollector(cst.CSTVisitor):
    METADATA_DEPENDENCIES = (PositionProvider,)

    def __init__(self, module: cst.Module) -> None:
        super().__init__()
        self.module = module
        self.stack: list[tuple[str, str]] = []
        self.captures: list[Capture] = []

    def _code(self, node: cst.CSTNode) -> str:
        return self.module.code_for_node(node)

    def _record(
        self,
        node: cst.FunctionDef | cst.ClassDef,
        *,
        kind: str,
        signature: str,
        bases: tuple[str, ...] = (),
    ) -> None:
        position = self.get_metadata(PositionProvider, node)
        decorators = tuple(self._code(item.decorator) for item in node.decorators)
        self.captures.append(
            Capture(
                name=node.name.value,
                kind=kind,
                start_line=position.start.line,
                end_line=position.end.line,
                signature_text=_flatten(signature),
                scope=tuple(name for name, _ in self.stack),
                body_text=self._code(node.body),
                decorators=decorators,
                bases=bases,
                redeclarable=isinstance(node, cst.FunctionDef) and _redeclarable(node.name.value, decorators),
            )
        )

    def visit_ClassDef(self, node: cst.ClassDef) -> bool:
        bases = tuple(self._code(arg.value) for arg in node.bases)
        arguments = [*bases]
        for arg in node.keywords:
            if arg.keyword is not None:
                arguments.append(f"{arg.keyword.value}={self._code(arg.value)}")
        signature = f"class {node.name.value}"
        if arguments:
            signature += f"({', '.join(arguments)})"
        self._record(node, kind="class", signature=signature, bases=bases)
        self.stack.append((node.name.value, "class"))
        return True

    def leave_ClassDef(self, original_node: cst.ClassDef) -> None:
        self.stack.pop()

    def visit_FunctionDef(self, node: cst.FunctionDef) -> bool:
        kind = "method" if self.stack and self.stack[-1][1] == "class" else "function"
        prefix = "async def" if node.asynchronous is not None else "def"
        signature = f"{prefix} {node.name.value}({self._code(node.params)})"
        if node.returns is not None:
            signature += f" -> {self._code(node.returns.annotation)}"
        self._record(node, kind=kind, signature=signature)
        self.stack.append((node.name.value, kind))
        return True

    def leave_FunctionDef(self, original_node: cst.FunctionDef) -> None:
        self.stack.pop()


class PythonCapability:
    lang = "python"

    def parse(self, source: bytes) -> cst.Module:
        try:
            return cst.parse_module(source)
        except cst.ParserSyntaxError as exc:
            raise SymbolParseError(f"python parse failed: {exc}", lang=self.lang) from exc

    def query(self, tree: object, query: str | None) -> list[Capture]:
        if not isinstance(tree, cst.Module):
            raise SymbolParseError("python capability expects a libcst Module", lang=self.lang)
        wrapper = MetadataWrapper(tree, unsafe_skip_copy=True)
        collector = _DeclarationCollector(wrapper.module)
        wrapper.visit(collector)
        return select(collector.captures, query)
