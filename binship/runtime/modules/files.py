import hashlib
import os
import shutil
from pathlib import Path
from typing import Any

from ..context import ExecutionContext
from ..models import ModuleResult
from .base import TaskModule

FILE_STATES = ("file", "directory", "absent", "touch")


def _parse_mode(mode: Any) -> int | None:
    if mode is None:
        return None
    if isinstance(mode, int):
        return mode
    return int(str(mode), 8)


def _apply_mode(path: Path, mode: int | None) -> bool:
    if mode is None:
        return False
    if path.stat().st_mode & 0o7777 == mode:
        return False
    path.chmod(mode)
    return True


class FileModule(TaskModule):
    """Manage file and directory presence and permissions."""

    name = "file"
    version = "1.0.0"
    required_parameters = ("path",)
    parameter_aliases = {"dest": "path", "name": "path"}

    def validate(self, args: dict[str, Any]) -> list[str]:
        errors = []
        state = args.get("state", "file")
        if state not in FILE_STATES:
            errors.append(f"state must be one of {', '.join(FILE_STATES)}, got {state}")
        try:
            _parse_mode(args.get("mode"))
        except ValueError:
            errors.append(f"invalid mode: {args.get('mode')}")
        return errors

    async def execute(self, args: dict[str, Any], context: ExecutionContext) -> ModuleResult:
        path = Path(args["path"])
        state = args.get("state", "file")
        mode = _parse_mode(args.get("mode"))

        if state == "absent":
            if not path.exists():
                return ModuleResult(msg=f"{path} already absent")
            if not context.check_mode:
                if path.is_dir() and not path.is_symlink():
                    shutil.rmtree(path)
                else:
                    path.unlink()
            return ModuleResult(changed=True, msg=f"removed {path}")

        if state == "directory":
            existed = path.is_dir()
            if context.check_mode:
                return ModuleResult(changed=not existed, msg=f"directory {path}")
            path.mkdir(parents=True, exist_ok=True)
            changed = _apply_mode(path, mode) or not existed
            return ModuleResult(changed=changed, msg=f"directory {path}")

        if state == "touch":
            if not context.check_mode:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.touch()
                _apply_mode(path, mode)
            return ModuleResult(changed=True, msg=f"touched {path}")

        if not path.is_file():
            return ModuleResult(failed=True, msg=f"file {path} does not exist")
        changed = False if context.check_mode else _apply_mode(path, mode)
        return ModuleResult(changed=changed, msg=f"file {path}")


class CopyModule(TaskModule):
    """Write an embedded static file or inline content to a destination."""

    name = "copy"
    version = "1.0.0"
    required_parameters = ("dest",)
    parameter_aliases = {"destination": "dest", "source": "src"}

    def validate(self, args: dict[str, Any]) -> list[str]:
        if ("src" in args) == ("content" in args):
            return ["exactly one of src or content is required"]
        try:
            _parse_mode(args.get("mode"))
        except ValueError:
            return [f"invalid mode: {args.get('mode')}"]
        return []

    async def execute(self, args: dict[str, Any], context: ExecutionContext) -> ModuleResult:
        if "content" in args:
            data = str(args["content"]).encode()
        else:
            data = context.static_file(str(args["src"])).read_bytes()

        dest = Path(args["dest"])
        if dest.is_dir():
            dest = dest / Path(str(args.get("src", "content"))).name
        checksum = hashlib.sha256(data).hexdigest()
        mode = _parse_mode(args.get("mode"))

        if dest.is_file() and hashlib.sha256(dest.read_bytes()).hexdigest() == checksum:
            changed = False if context.check_mode else _apply_mode(dest, mode)
            return ModuleResult(changed=changed, msg=f"{dest} up to date", results={"checksum": checksum})

        if context.check_mode:
            return ModuleResult(changed=True, msg=f"{dest} would be written", results={"checksum": checksum})

        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = dest.with_name(f".{dest.name}.tmp")
        tmp_path.write_bytes(data)
        os.replace(tmp_path, dest)
        _apply_mode(dest, mode)
        return ModuleResult(changed=True, msg=f"wrote {dest}", results={"checksum": checksum, "size": len(data)})
