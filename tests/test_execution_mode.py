import tempfile
import unittest
import zipfile
from pathlib import Path

from entitygen.execution_mode import (
    CHANGELOG_DIR_NAME,
    ExecutionMode,
    ExecutionModeResolver,
    archive_of,
    stable_temp_root,
)

from helpers import drop_modules, on_sys_path, write_module


class TestExpandedLayout(unittest.TestCase):
    def test_resource_package_directory_is_the_root(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            write_module(Path(td), "expres.placeholder", "")
            with on_sys_path(Path(td)):
                try:
                    location = ExecutionModeResolver("expres", "app").resolve()
                finally:
                    drop_modules("expres")
            self.assertEqual(location.mode, ExecutionMode.EXPANDED)
            self.assertEqual(location.root.resolve(), (Path(td) / "expres").resolve())
            self.assertFalse(location.is_packaged)


class TestPackagedLayout(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.archive = self.tmp / "app.pyz"
        with zipfile.ZipFile(self.archive, "w") as zf:
            zf.writestr("zipres/__init__.py", "")
            zf.writestr("zipres/db/changelog/patches/001_seed.yml", "databaseChangeLog: []\n")
            zf.writestr("zipres/db/changelog/patches/notes.txt", "ignored\n")
        self.temp_root = self.tmp / "temp"

    def tearDown(self) -> None:
        drop_modules("zipres")
        self._tmp.cleanup()

    def resolve(self):
        with on_sys_path(self.archive):
            return ExecutionModeResolver("zipres", "resos", temp_dir=self.temp_root).resolve()

    def test_archive_is_detected(self) -> None:
        location = self.resolve()
        self.assertEqual(location.mode, ExecutionMode.PACKAGED)
        self.assertEqual(location.archive, str(self.archive))
        self.assertEqual(location.root, stable_temp_root(str(self.archive), "resos", self.temp_root))
        self.assertEqual(location.root.name, CHANGELOG_DIR_NAME)

    def test_bundled_patches_are_copied(self) -> None:
        location = self.resolve()
        copied = sorted(p.name for p in location.patches_dir.iterdir())
        self.assertEqual(copied, ["001_seed.yml"])
        self.assertEqual(
            (location.patches_dir / "001_seed.yml").read_text(encoding="utf-8"),
            "databaseChangeLog: []\n",
        )

    def test_root_is_stable_across_restarts(self) -> None:
        first = self.resolve()
        drop_modules("zipres")
        second = self.resolve()
        self.assertEqual(first.root, second.root)


class TestFallback(unittest.TestCase):
    def test_unresolvable_package_falls_back_to_packaged(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            resolver = ExecutionModeResolver("no_such_resource_pkg", "app", temp_dir=Path(td))
            with self.assertLogs("entitygen.execution_mode", level="WARNING"):
                location = resolver.resolve()
            self.assertEqual(location.mode, ExecutionMode.PACKAGED)
            self.assertTrue(location.root.is_dir())
            self.assertTrue(str(location.root).startswith(td))


class TestHelpers(unittest.TestCase):
    def test_archive_of(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            archive = Path(td) / "bundle.pex"
            archive.write_bytes(b"")
            self.assertEqual(archive_of(str(archive / "pkg" / "__init__.py")), str(archive))
            self.assertIsNone(archive_of(str(Path(td) / "pkg" / "__init__.py")))
            self.assertIsNone(archive_of(None))

    def test_stable_temp_root_depends_on_archive_and_app(self) -> None:
        base = Path("/tmp/x")
        a = stable_temp_root("/opt/app.pyz", "resos", base)
        self.assertEqual(a, stable_temp_root("/opt/app.pyz", "resos", base))
        self.assertNotEqual(a, stable_temp_root("/opt/other.pyz", "resos", base))
        self.assertNotEqual(a, stable_temp_root("/opt/app.pyz", "other", base))
