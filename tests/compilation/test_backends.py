"""Tests for compiler backends."""

import subprocess
import sys

import pytest

from binship.compilation.backends import PyAppBackend
from binship.compilation.backends import ZipappBackend
from binship.compilation.backends import create_backend
from binship.compilation.backends.zipapp import strip_tree
from binship.errors import CompileError
from binship.models.artifacts import BuildFlags


@pytest.mark.unit
class TestCreateBackend:
    """Tests for backend selection."""

    def test_zipapp_default(self) -> None:
        assert isinstance(create_backend("zipapp"), ZipappBackend)

    def test_pyapp_requires_source(self, tmp_path) -> None:
        with pytest.raises(ValueError, match="pyapp_source_dir"):
            create_backend("pyapp")
        assert isinstance(create_backend("pyapp", pyapp_source_dir=str(tmp_path)), PyAppBackend)

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError, match="Unknown compiler backend"):
            create_backend("nuitka")


@pytest.mark.unit
class TestZipappBackend:
    """Tests for zipapp packaging."""

    def test_strip_tree(self, tmp_path) -> None:
        (tmp_path / "pkg" / "__pycache__").mkdir(parents=True)
        (tmp_path / "pkg" / "__pycache__" / "mod.cpython-311.pyc").write_bytes(b"x" * 10)
        (tmp_path / "pkg-1.0.dist-info").mkdir()
        (tmp_path / "pkg-1.0.dist-info" / "METADATA").write_bytes(b"y" * 5)
        (tmp_path / "pkg" / "mod.py").write_text("x = 1\n")

        assert strip_tree(tmp_path) == 15
        assert sorted(p.name for p in tmp_path.rglob("*")) == ["mod.py", "pkg"]

    def test_cross_platform_pip_arguments(self, tmp_path, monkeypatch) -> None:
        backend = ZipappBackend(python="python3", python_version="3.12")
        monkeypatch.setattr(backend, "_is_native", lambda triple: False)

        args = backend._pip_install_args("aarch64-unknown-linux-gnu", tmp_path / "r.txt", tmp_path / "site")
        assert "--only-binary=:all:" in args
        assert args[args.index("--python-version") + 1] == "3.12"
        assert "manylinux2014_aarch64" in args

    @pytest.mark.asyncio
    async def test_unsupported_triple_has_no_toolchain(self) -> None:
        assert not await ZipappBackend().toolchain_available("sparc-sun-solaris")

    @pytest.mark.asyncio
    async def test_build_executable_archive(self, tmp_path) -> None:
        source = tmp_path / "src"
        source.mkdir()
        (source / "__main__.py").write_text("print('shipped')\n")
        output = tmp_path / "out" / "agent"

        result = await ZipappBackend().build(
            source, "x86_64-unknown-linux-gnu", BuildFlags(), tmp_path / "work", output
        )

        assert result.path == output
        completed = subprocess.run([sys.executable, str(output)], capture_output=True, text=True, check=True)
        assert completed.stdout == "shipped\n"

    @pytest.mark.asyncio
    async def test_syntax_error_is_compile_error(self, tmp_path) -> None:
        source = tmp_path / "src"
        source.mkdir()
        (source / "__main__.py").write_text("def broken(:\n")

        with pytest.raises(CompileError, match="does not compile"):
            await ZipappBackend().build(
                source, "x86_64-unknown-linux-gnu", BuildFlags(), tmp_path / "work", tmp_path / "agent"
            )
