import unittest

from sqlalchemy import create_engine, inspect, text

from fleet_backend.migrations import (
    LEGACY_GPIO_INDEX,
    MIGRATIONS,
    apply_migrations,
    pending_migrations,
)


class MigrationTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)

    def tearDown(self):
        self.engine.dispose()

    def test_apply_all_then_nothing_pending(self):
        applied = apply_migrations(self.engine)
        self.assertEqual(applied, [m.version for m in MIGRATIONS])
        self.assertEqual(pending_migrations(self.engine), [])
        self.assertEqual(apply_migrations(self.engine), [])

    def test_machines_name_is_unique(self):
        apply_migrations(self.engine)
        indexes = inspect(self.engine).get_indexes("machines")
        name_indexes = [i for i in indexes if i["column_names"] == ["name"]]
        self.assertTrue(name_indexes)
        self.assertTrue(name_indexes[0]["unique"])

    def test_drops_legacy_gpio_index(self):
        with self.engine.begin() as conn:
            MIGRATIONS[0].apply(conn)
            conn.execute(
                text(f"CREATE INDEX {LEGACY_GPIO_INDEX} ON machines (name, ip)")
            )
        apply_migrations(self.engine)
        names = {i["name"] for i in inspect(self.engine).get_indexes("machines")}
        self.assertNotIn(LEGACY_GPIO_INDEX, names)


if __name__ == "__main__":
    unittest.main()
