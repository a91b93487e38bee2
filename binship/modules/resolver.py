"""Module resolution for execution plans.

Maps module names referenced by a plan to implementations that will be
compiled into the generated program: the built-in modules shipped with the
runtime, plus modules found in extra module directories.

An extra module is a file ``<name>.py`` defining a ``TaskModule`` subclass
(imported from ``binship_runtime.modules.base``) whose ``name`` class
attribute equals the file name. Files are inspected with ``ast``; they are
never imported on the build host.

Contract:
- Inputs: Module names, extra module directories
- Outputs: ModuleSpec per name
- Side Effects: None (read-only discovery)
"""

import ast
import hashlib
import inspect
import logging
from collections.abc import Iterable
from pathlib import Path

from ..errors import PlanError
from ..models.units import ModuleSpec
from ..runtime.modules import BUILTIN_MODULES

logger = logging.getLogger(__name__)

EXTRA_MODULE_PACKAGE = "binship_modules"


def _digest(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


def _builtin_spec(name: str) -> ModuleSpec:
    module_cls = BUILTIN_MODULES[name]
    source = Path(inspect.getfile(module_cls))
    return ModuleSpec(
        name=name,
        version=module_cls.version,
        import_path=f"binship_runtime.modules.{source.stem}",
        class_name=module_cls.__name__,
        digest=_digest(source),
    )


def _class_attr(node: ast.ClassDef, attr: str) -> str | None:
    for statement in node.body:
        if isinstance(statement, ast.Assign) and len(statement.targets) == 1:
            target = statement.targets[0]
            value = statement.value
        elif isinstance(statement, ast.AnnAssign) and statement.value is not None:
            target = statement.target
            value = statement.value
        else:
            continue
        if isinstance(target, ast.Name) and target.id == attr and isinstance(value, ast.Constant):
            return str(value.value)
    return None


def _parse(path: Path, name: str) -> ast.Module:
    try:
        return ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
    except SyntaxError as e:
        raise PlanError(f"Module {name} at {path} is not valid Python: {e}") from e


def _module_class(tree: ast.Module, name: str) -> ast.ClassDef | None:
    """Return the top-level class declaring ``name = "<name>"``."""
    for node in tree.body:
        if isinstance(node, ast.ClassDef) and _class_attr(node, "name") == name:
            return node
    return None


class ModuleResolver:
    """Resolves module names to compilable implementations.

    Extra module directories are searched in order and may shadow built-ins.

    Example:
        >>> resolver = ModuleResolver([Path("plugins")])
        >>> specs = resolver.resolve_all({"command", "deploy_app"})
    """

    def __init__(self, module_dirs: Iterable[Path] = ()) -> None:
        self.module_dirs = [Path(d) for d in module_dirs]

    def available(self) -> set[str]:
        """Names that ``resolve`` can turn into a spec.

        Extra files that are not valid Python or define no matching module
        class are left out, so plans using them fail validation.
        """
        names = set(BUILTIN_MODULES)
        for directory in self.module_dirs:
            if not directory.is_dir():
                continue
            for path in sorted(directory.glob("*.py")):
                if path.stem.startswith("_"):
                    continue
                try:
                    tree = _parse(path, path.stem)
                except PlanError as e:
                    logger.warning(str(e))
                    continue
                if _module_class(tree, path.stem) is not None:
                    names.add(path.stem)
        return names

    def _extra_spec(self, name: str) -> ModuleSpec | None:
        for directory in self.module_dirs:
            path = directory / f"{name}.py"
            if not path.is_file():
                continue
            node = _module_class(_parse(path, name), name)
            if node is not None:
                return ModuleSpec(
                    name=name,
                    version=_class_attr(node, "version") or "0.0.0",
                    import_path=f"{EXTRA_MODULE_PACKAGE}.{name}",
                    class_name=node.name,
                    digest=_digest(path),
                    source_path=str(path.resolve()),
                )
            logger.warning(f"{path} defines no module class with name = '{name}'")
        return None

    def resolve(self, name: str) -> ModuleSpec | None:
        spec = self._extra_spec(name)
        if spec is not None:
            logger.debug(f"Resolved module {name} to {spec.source_path}")
            return spec
        if name in BUILTIN_MODULES:
            return _builtin_spec(name)
        return None

    def resolve_all(self, names: Iterable[str]) -> list[ModuleSpec]:
        """Resolve every name, sorted by name.

        Raises:
            PlanError: Listing every name that could not be resolved
        """
        specs: list[ModuleSpec] = []
        missing: list[str] = []
        for name in sorted(set(names)):
            spec = self.resolve(name)
            if spec is None:
                missing.append(name)
            else:
                specs.append(spec)
        if missing:
            raise PlanError(f"Unknown modules: {', '.join(missing)}", missing_modules=missing)
        return specs
