import tempfile
import unittest
from pathlib import Path

import yaml

from entitygen.changelog import ChangesetGenerator
from entitygen.generate_entities import GeneratorConfig, generate_outputs, write_outputs
from entitygen.graph import SchemaGenerationError
from entitygen.scanner import EntityRegistry, scan_package

from helpers import MODELS_DIR, SOURCE_PACKAGE, drop_modules, on_sys_path, write_module

HANDWRITTEN = '''
from entitygen import mapping
from entitygen.mapping import entity


@entity(table="author", fields=(mapping.Identity(),))
class AuthorEntity:
    pass


@entity(table="orphan", fields=(mapping.Column("x", "x", "integer"),))
class OrphanEntity:
    pass


class Plain:
    pass
'''

IMPORTER = '''
from scanapp.entities.author import AuthorEntity
'''


class TestScanPackage(unittest.TestCase):
    def test_collects_decorated_classes_once(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            write_module(Path(td), "scanapp.entities.author", HANDWRITTEN)
            write_module(Path(td), "scanapp.entities.reexport", IMPORTER)
            with on_sys_path(Path(td)):
                try:
                    with self.assertLogs("entitygen.scanner", level="WARNING") as logs:
                        registry = scan_package("scanapp")
                finally:
                    drop_modules("scanapp")
        self.assertEqual(list(registry.entities), ["AuthorEntity"])
        self.assertEqual(registry.entities["AuthorEntity"].table, "author")
        self.assertTrue(any("OrphanEntity" in line for line in logs.output))

    def test_unknown_entity_lookup(self) -> None:
        with self.assertRaises(SchemaGenerationError):
            EntityRegistry().entity("MissingEntity")


class TestGeneratedPackageSchema(unittest.TestCase):
    package = "persisted_scan.resos"

    @classmethod
    def setUpClass(cls) -> None:
        cls._tmp = tempfile.TemporaryDirectory()
        target = Path(cls._tmp.name)
        config = GeneratorConfig(MODELS_DIR, target, SOURCE_PACKAGE, cls.package)
        outputs, _ = generate_outputs(config)
        write_outputs(config, outputs)
        with on_sys_path(target, MODELS_DIR):
            cls.registry = scan_package(cls.package)
            cls.changelog_dir = target / "changelog"
            cls.written = ChangesetGenerator(cls.registry, cls.changelog_dir, seed=1).generate()

    @classmethod
    def tearDownClass(cls) -> None:
        drop_modules("persisted_scan")
        cls._tmp.cleanup()

    def load(self, index: int) -> list[dict]:
        doc = yaml.safe_load(self.written[index].read_text(encoding="utf-8"))
        return doc["databaseChangeLog"][0]["changeSet"]["changes"]

    def test_registry_contents(self) -> None:
        self.assertEqual(
            sorted(self.registry.entities),
            ["BookingEntity", "CustomerEntity", "RestaurantEntity", "TableEntity"],
        )
        self.assertEqual(sorted(self.registry.embeddables), ["AddressEntity", "GeoPointEntity"])

    def test_changeset_order(self) -> None:
        self.assertEqual(
            [p.name for p in self.written],
            [
                "0000000000001_customer_init.yml",
                "0000000000002_restaurant_init.yml",
                "0000000000003_booking_init.yml",
                "0000000000004_table_01_init.yml",
            ],
        )

    def test_booking_schema(self) -> None:
        changes = self.load(2)
        columns = [c["column"]["name"] for c in changes[0]["createTable"]["columns"]]
        self.assertEqual(columns, ["id", "date_time", "people_count", "status", "order_01", "comments"])

        fks = [c["addColumn"]["columns"][0]["column"] for c in changes if "addColumn" in c]
        self.assertEqual([c["name"] for c in fks], ["customer_id", "restaurant_id"])
        self.assertEqual(fks[0]["constraints"]["references"], "customer(id)")
        self.assertEqual(fks[0]["constraints"]["foreignKeyName"], "fk_booking_customer")
        self.assertFalse(fks[0]["constraints"]["nullable"])
        self.assertNotIn("nullable", fks[1]["constraints"])

        join = changes[-1]["createTable"]
        self.assertEqual(join["tableName"], "booking_tables")
        self.assertEqual(
            [c["column"]["name"] for c in join["columns"]],
            ["booking_id", "tables_id", "tables_position"],
        )

    def test_restaurant_inlines_address(self) -> None:
        columns = [c["column"]["name"] for c in self.load(1)[0]["createTable"]["columns"]]
        self.assertEqual(
            columns,
            ["id", "name_01", "address_street", "address_city", "address_geo_latitude", "address_geo_longitude"],
        )
