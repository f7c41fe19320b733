import tempfile
import unittest
from pathlib import Path

from entitygen.model_parser import (
    FieldRole,
    ModelCatalog,
    ParseError,
    collect_imports,
    load_model_catalog,
    module_name_for,
    parse_model_source,
)

from helpers import MODELS_DIR, SOURCE_PACKAGE

SAMPLE = '''
from typing import Annotated, ClassVar, List, Optional, Union

from pydantic import BaseModel, Field


class Base(BaseModel):
    id: str
    created: "datetime.datetime | None" = None


class Thing(Base):
    model_config = {"frozen": True}
    kind: ClassVar[str] = "thing"
    _private: int = 0
    label: Annotated[str, Field(max_length=10)]
    maybe: Union[int, None] = None
    ratio: float | None
    parts: Optional[List["Part"]] = None
    size: int = Field(...)
    weight: int = Field(5)
    code: str = Field(default="x")


class Part(BaseModel):
    id: str


class Ticket(BaseModel):
    class Priority(IntEnum):
        LOW = 1
        HIGH = 2

    id: str
    priority: Priority
'''


class TestParseModelSource(unittest.TestCase):
    def setUp(self) -> None:
        types = parse_model_source(SAMPLE, "shop.model.thing", Path("thing.py"))
        self.by_name = {t.name: t for t in types}

    def test_finds_classes_and_nested_enums(self) -> None:
        self.assertEqual(set(self.by_name), {"Base", "Thing", "Part", "Ticket", "Priority"})
        priority = self.by_name["Priority"]
        self.assertTrue(priority.is_enum)
        self.assertEqual(priority.outer, "Ticket")

    def test_skips_class_vars_and_private_fields(self) -> None:
        names = [f.name for f in self.by_name["Thing"].fields]
        self.assertEqual(names, ["label", "maybe", "ratio", "parts", "size", "weight", "code"])

    def test_unwraps_optional_union_and_annotated(self) -> None:
        thing = self.by_name["Thing"]
        label = thing.field("label")
        self.assertEqual(label.type_name, "str")
        self.assertFalse(label.optional)
        self.assertTrue(label.required)

        maybe = thing.field("maybe")
        self.assertEqual(maybe.type_name, "int")
        self.assertTrue(maybe.optional)

        ratio = thing.field("ratio")
        self.assertEqual(ratio.type_name, "float")
        self.assertTrue(ratio.optional)
        self.assertFalse(ratio.has_default)
        self.assertFalse(ratio.required)

    def test_forward_reference_strings(self) -> None:
        created = self.by_name["Base"].field("created")
        self.assertEqual(created.type_name, "datetime.datetime")
        self.assertTrue(created.optional)

        parts = self.by_name["Thing"].field("parts")
        self.assertEqual(parts.container, "List")
        self.assertEqual(parts.element_type, "Part")
        self.assertTrue(parts.optional)

    def test_field_defaults(self) -> None:
        thing = self.by_name["Thing"]
        self.assertTrue(thing.field("size").required)
        self.assertFalse(thing.field("weight").required)
        self.assertFalse(thing.field("code").required)

    def test_syntax_error_raises_parse_error(self) -> None:
        with self.assertRaises(ParseError):
            parse_model_source("class Broken(:\n", "shop.broken", Path("broken.py"))


class TestModelCatalog(unittest.TestCase):
    def setUp(self) -> None:
        self.catalog = ModelCatalog(parse_model_source(SAMPLE, "shop.model.thing", Path("thing.py")))

    def test_inherits_base_fields(self) -> None:
        thing = self.catalog.get("Thing")
        self.assertEqual([f.name for f in thing.fields][:2], ["id", "created"])
        self.assertTrue(thing.has_identity())

    def test_classifies_collection_of_identity_types(self) -> None:
        parts = self.catalog.classify(self.catalog.get("Thing").field("parts"))
        self.assertEqual(parts.role, FieldRole.COLLECTION_OF_REFERENCE)
        self.assertEqual(parts.target, "Part")

    def test_nested_enum_is_stored_as_text(self) -> None:
        priority = self.catalog.classify(self.catalog.get("Ticket").field("priority"))
        self.assertEqual(priority.role, FieldRole.SCALAR)
        self.assertEqual(priority.storage_type, "varchar(50)")

    def test_dotted_scalar_types(self) -> None:
        created = self.catalog.classify(self.catalog.get("Thing").field("created"))
        self.assertEqual(created.storage_type, "timestamp with time zone")


class TestFixtureModels(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.catalog = load_model_catalog(MODELS_DIR, SOURCE_PACKAGE)

    def roles(self, model: str) -> dict:
        t = self.catalog.get(model)
        return {f.name: self.catalog.classify(f) for f in t.fields}

    def test_booking_roles(self) -> None:
        roles = self.roles("Booking")
        self.assertEqual(roles["customer"].role, FieldRole.REFERENCE)
        self.assertEqual(roles["customer"].target, "Customer")
        self.assertEqual(roles["restaurant"].role, FieldRole.REFERENCE)
        self.assertEqual(roles["tables"].role, FieldRole.COLLECTION_OF_REFERENCE)
        self.assertEqual(roles["tables"].target, "Table")
        self.assertEqual(roles["status"].storage_type, "varchar(50)")
        self.assertEqual(roles["comments"].storage_type, "varchar(255)")
        self.assertEqual(roles["date_time"].storage_type, "timestamp with time zone")
        self.assertIsNone(roles["metadata"].storage_type)

    def test_required_flags(self) -> None:
        booking = self.catalog.get("Booking")
        self.assertTrue(booking.field("customer").required)
        self.assertTrue(booking.field("people_count").required)
        self.assertFalse(booking.field("restaurant").required)
        self.assertFalse(booking.field("tables").required)

    def test_embedded_and_scalar_collections(self) -> None:
        roles = self.roles("Restaurant")
        self.assertEqual(roles["address"].role, FieldRole.EMBEDDED)
        self.assertEqual(roles["address"].target, "Address")
        self.assertEqual(roles["tags"].role, FieldRole.COLLECTION_OF_SCALAR)
        self.assertEqual(self.roles("Address")["geo"].role, FieldRole.EMBEDDED)

    def test_identity_detection(self) -> None:
        self.assertTrue(self.catalog.has_identity("Restaurant"))
        self.assertEqual(self.catalog.get("Restaurant").identity_field().type_name, "UUID")
        self.assertFalse(self.catalog.has_identity("Address"))
        self.assertFalse(self.catalog.has_identity("BookingPage"))
        self.assertTrue(self.catalog.is_enum("BookingStatus"))

    def test_relative_imports_are_resolved(self) -> None:
        restaurant = self.catalog.get("Restaurant")
        self.assertEqual(restaurant.imports["Address"], "from resos.model.address import Address")
        self.assertEqual(restaurant.module, "resos.model.restaurant")


class TestLoading(unittest.TestCase):
    def test_unparseable_files_are_skipped(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td) / "shop" / "model"
            root.mkdir(parents=True)
            (root / "good.py").write_text("class Good:\n    id: str\n", encoding="utf-8")
            (root / "bad.py").write_text("class Bad(:\n", encoding="utf-8")
            with self.assertLogs("entitygen.model_parser", level="WARNING") as logs:
                catalog = load_model_catalog(Path(td), "shop.model")
        self.assertIn("Good", catalog)
        self.assertNotIn("Bad", catalog)
        self.assertTrue(any("bad.py" in line for line in logs.output))

    def test_module_names(self) -> None:
        root = Path("/src/shop/model")
        self.assertEqual(module_name_for(root / "a" / "b.py", root, "shop.model"), "shop.model.a.b")
        self.assertEqual(module_name_for(root / "__init__.py", root, "shop.model"), "shop.model")

    def test_collect_imports_levels(self) -> None:
        import ast

        tree = ast.parse("from __future__ import annotations\nfrom ..common import Money\nimport datetime\n")
        imports = collect_imports(tree, "shop.model.orders.order")
        self.assertEqual(imports["Money"], "from shop.model.common import Money")
        self.assertEqual(imports["datetime"], "import datetime")
        self.assertNotIn("annotations", imports)
