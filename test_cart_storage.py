import os
import tempfile
import unittest
from unittest import mock

from cart_storage import JsonFileStorage, MemoryStorage, SqliteStorage, connect
from cart_store import CartStore
from pos_errors import PersistenceError


class SqliteStorageTest(unittest.TestCase):
    def setUp(self):
        self.conn = connect(":memory:")
        self.storage = SqliteStorage(self.conn)

    def tearDown(self):
        self.conn.close()

    def test_save_load_erase(self):
        self.assertIsNone(self.storage.load("pos_cart"))
        self.storage.save("pos_cart", '{"lines": []}')
        self.storage.save("pos_cart", '{"lines": [1]}')
        self.assertEqual(self.storage.load("pos_cart"), '{"lines": [1]}')
        count = self.conn.execute("SELECT COUNT(*) FROM kv_state").fetchone()[0]
        self.assertEqual(count, 1)
        self.storage.erase("pos_cart")
        self.assertIsNone(self.storage.load("pos_cart"))

    def test_sqlite_errors_become_persistence_errors(self):
        self.conn.execute("DROP TABLE kv_state")
        with self.assertRaises(PersistenceError):
            self.storage.save("pos_cart", "{}")
        with self.assertRaises(PersistenceError):
            self.storage.load("pos_cart")

    def test_cart_survives_restart_on_sqlite(self):
        with tempfile.TemporaryDirectory() as tmp:
            db_path = os.path.join(tmp, "pos.db")
            conn = connect(db_path)
            cart = CartStore(SqliteStorage(conn))
            cart.add_line({"id": "A", "name": "Alpha", "price": "4.25"}, 2)
            conn.close()

            conn = connect(db_path)
            try:
                restored = CartStore(SqliteStorage(conn))
                self.assertEqual(str(restored.total()), "8.50")
            finally:
                conn.close()


class JsonFileStorageTest(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.storage = JsonFileStorage(os.path.join(self._tmp.name, "state"))

    def tearDown(self):
        self._tmp.cleanup()

    def test_save_load_erase(self):
        self.assertIsNone(self.storage.load("pos_cart"))
        self.storage.save("pos_cart", "{}")
        self.assertEqual(self.storage.load("pos_cart"), "{}")
        self.assertEqual(os.listdir(self.storage.directory), ["pos_cart.json"])
        self.storage.erase("pos_cart")
        self.storage.erase("pos_cart")
        self.assertIsNone(self.storage.load("pos_cart"))

    def test_failed_write_keeps_previous_blob(self):
        self.storage.save("pos_cart", "old")
        with mock.patch("cart_storage.os.replace", side_effect=OSError("disk full")):
            with self.assertRaises(PersistenceError):
                self.storage.save("pos_cart", "new")
        self.assertEqual(self.storage.load("pos_cart"), "old")
        self.assertEqual(os.listdir(self.storage.directory), ["pos_cart.json"])

    def test_invalid_key_rejected(self):
        with self.assertRaises(PersistenceError):
            self.storage.save("../", "{}")


class MemoryStorageTest(unittest.TestCase):
    def test_initial_blobs_are_copied(self):
        initial = {"k": "v"}
        storage = MemoryStorage(initial)
        storage.erase("k")
        self.assertEqual(initial, {"k": "v"})


if __name__ == "__main__":
    unittest.main()
