# test_kconf.py

import json
import os
import shutil
import stat
import tempfile
import threading
import time
import unittest
from pathlib import Path
from unittest import mock

from kconf import (CodecError, ConfigStore, ParseError, SerializationError,
                   StaleWriteError, StoreOptions, resolve_config_dir)
from kconf.lock import RWLock


class ConfigStoreTest(unittest.TestCase):

    def setUp(self):
        """在每个测试用例开始前运行：创建一个干净的临时目录。"""
        self.tmp = Path(tempfile.mkdtemp(prefix="kconf-test-"))
        self.dir = self.tmp / "conf"

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def _store(self, **kwargs) -> ConfigStore:
        return ConfigStore(self.dir, **kwargs)

    def test_01_set_and_get(self):
        store = self._store()
        store.set("name", "Mr. Rob")
        self.assertEqual(store.get("name"), "Mr. Rob")

    def test_02_get_absent_is_empty(self):
        self.assertEqual(self._store().get("name"), "")

    def test_03_set_updates_timestamp(self):
        store = self._store()
        self.assertIsNone(store.updated)
        store.set("a", "1")
        first = store.updated
        self.assertIsNotNone(first)
        time.sleep(0.01)
        store.set("a", "2")
        self.assertGreater(store.updated, first)

    def test_04_keys_delete_longest(self):
        store = self._store()
        for key in ("short", "long", "reallylong"):
            store.set(key, key)
        self.assertEqual(store.keys(), {"short", "long", "reallylong"})
        self.assertEqual(store.longest_key(), ("reallylong", 10))

        store.delete("long")
        store.delete("missing")
        self.assertEqual(store.keys(), {"short", "reallylong"})
        self.assertEqual(self._store().longest_key(), ("", 0))

    def test_05_default_location(self):
        store = self._store()
        self.assertTrue(store.dir.is_absolute())
        self.assertEqual(store.path, self.dir / "config.json")
        self.assertEqual(self._store(file="my.json").path, self.dir / "my.json")
        lines = ConfigStore(self.dir, options=StoreOptions(codec="lines"))
        self.assertEqual(lines.path, self.dir / "values")

    def test_06_injected_dir_resolver(self):
        store = ConfigStore(options=StoreOptions(resolve_dir=lambda: self.tmp / "resolved"))
        self.assertEqual(store.dir, self.tmp / "resolved")

    def test_07_save_creates_dir_with_restrictive_modes(self):
        store = ConfigStore(self.dir / "nested" / "deeper")
        store.set("name", "Mr. Rob")
        store.save()

        self.assertTrue(store.path.is_file())
        self.assertEqual(stat.S_IMODE(store.path.stat().st_mode), 0o600)
        self.assertEqual(stat.S_IMODE(store.dir.stat().st_mode), 0o700)
        self.assertIsNotNone(store.saved)

        on_disk = json.loads(store.path.read_text(encoding="utf-8"))
        self.assertEqual(on_disk["data"], {"name": "Mr. Rob"})
        self.assertEqual(on_disk["file"], "config.json")
        self.assertIn("saved", on_disk)
        self.assertIn("updated", on_disk)
        # 原子写入不会留下临时文件
        self.assertEqual([p.name for p in store.dir.iterdir()], ["config.json"])

    def test_08_save_twice_is_idempotent(self):
        store = self._store()
        store.set("name", "Mr. Rob")
        store.save()
        first = store.path.read_bytes()
        store.save()
        self.assertEqual(store.path.read_bytes(), first)

    def test_09_conflict_detection(self):
        """A 保存后 B 覆盖保存，A 再次修改保存时必须检测到冲突。"""
        a = self._store()
        a.set("owner", "a")
        a.save()
        a_saved = a.saved
        time.sleep(0.01)

        b = self._store()
        b.set("owner", "b")
        b.save()
        after_b = b.path.read_bytes()
        time.sleep(0.01)

        a.set("owner", "a-again")
        with self.assertRaises(StaleWriteError) as cm:
            a.save()
        self.assertEqual(cm.exception.path, a.path)
        self.assertEqual(cm.exception.synced, a_saved)
        self.assertGreater(cm.exception.disk_saved, a_saved)
        self.assertEqual(b.path.read_bytes(), after_b)

        # 恢复流程：重新加载、重新修改、再保存
        a.load()
        self.assertEqual(a.get("owner"), "b")
        a.set("owner", "a-again")
        a.save()
        self.assertEqual(ConfigStore.from_file(a.path, self.dir).get("owner"), "a-again")

    def test_10_force_save_after_external_write(self):
        jc = self._store()
        jc.set("name", "Mr. Rob")
        jc.save()
        time.sleep(0.01)

        another = self._store()
        another.set("another", "Mr. Rob")
        another.force_save()

        with self.assertRaises(StaleWriteError):
            jc.save()
        jc.force_save()
        loaded = self._store()
        loaded.load()
        self.assertEqual(loaded.snapshot(), {"name": "Mr. Rob"})

    def test_11_unmodified_fresh_store_cannot_clobber(self):
        writer = self._store()
        writer.set("a", "1")
        writer.save()
        with self.assertRaises(StaleWriteError):
            self._store().save()

    def test_12_load_creates_if_absent(self):
        store = self._store()
        self.assertFalse(store.path.exists())
        store.load()
        self.assertTrue(store.path.exists())
        self.assertEqual(store.snapshot(), {})
        self.assertIsNotNone(store.saved)
        self.assertEqual(json.loads(store.path.read_bytes())["data"], {})

    def test_13_load_discards_unsaved_edits(self):
        store = self._store()
        store.set("kept", "yes")
        store.save()
        store.set("pending", "lost")
        store.load()
        self.assertEqual(store.snapshot(), {"kept": "yes"})
        # 加载后与磁盘同步，可以继续保存
        store.set("new", "1")
        store.save()

    def test_14_load_error_leaves_state(self):
        store = self._store()
        store.set("a", "1")
        self.dir.mkdir(parents=True)
        store.path.write_text("{broken", encoding="utf-8")
        with self.assertRaises(CodecError):
            store.load()
        self.assertEqual(store.snapshot(), {"a": "1"})

    def test_15_save_serialization_error(self):
        store = ConfigStore(self.dir, options=StoreOptions(codec="lines"))
        store.set("bad=key", "x")
        with self.assertRaises(SerializationError):
            store.save()
        self.assertFalse(store.path.exists())
        self.assertIsNone(store.saved)

    def test_16_line_store_round_trip(self):
        opts = StoreOptions(codec="lines")
        store = ConfigStore(self.dir, options=opts)
        store.set("b", "2")
        store.set("a", "1")
        store.save()
        self.assertEqual(store.path.read_bytes(), b"a=1\nb=2\n")
        store.save()

        other = ConfigStore(self.dir, options=opts)
        other.load()
        self.assertEqual(other.snapshot(), {"a": "1", "b": "2"})
        self.assertIsNone(other.saved)

    def test_17_parse_and_serialize(self):
        store = ConfigStore(self.dir, options=StoreOptions(codec="lines"))
        store.set("keep", "me")
        store.parse(b"foo=FOO\r\nbar=BAR\n")
        self.assertEqual(store.snapshot(), {"keep": "me", "foo": "FOO", "bar": "BAR"})
        self.assertEqual(store.serialize(), b"bar=BAR\nfoo=FOO\nkeep=me\n")

        with self.assertRaises(ParseError):
            store.parse(b"foo=changed\nfoo FOO\n")
        self.assertEqual(store.get("foo"), "FOO")

    def test_18_from_json_and_lines(self):
        store = ConfigStore.from_json('{"data":{"name": "Mr. Rob"}}', self.dir)
        self.assertEqual(store.get("name"), "Mr. Rob")
        self.assertEqual(store.dir, self.dir)

        store = ConfigStore.from_lines(b"name=Mr. Rob\n", self.dir)
        self.assertEqual(store.get("name"), "Mr. Rob")

        with self.assertRaises(CodecError):
            ConfigStore.from_json("[]", self.dir)

    def test_19_from_file_does_not_move_location(self):
        sample = self.tmp / "mapsample.json"
        sample.write_text('{"data":{"name":"Mr. Rob"}}', encoding="utf-8")
        store = ConfigStore.from_file(sample, self.dir)
        self.assertEqual(store.get("name"), "Mr. Rob")
        self.assertEqual(store.path, self.dir / "config.json")

    def test_20_init_purges(self):
        store = self._store()
        store.set_save("a", "1")
        store.init()
        other = self._store()
        other.load()
        self.assertEqual(other.snapshot(), {})

    def test_21_non_atomic_write(self):
        store = ConfigStore(self.dir, options=StoreOptions(atomic=False, file_mode=0o640))
        store.set_force_save("a", "1")
        self.assertEqual(ConfigStore.from_file(store.path, self.dir).get("a"), "1")

    def test_22_concurrent_sets(self):
        store = self._store()

        def worker(n):
            for i in range(50):
                store.set(f"k{n}-{i}", str(i))
                store.get(f"k{n}-{i}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(len(store.keys()), 8 * 50)

    def test_23_failed_write_keeps_state(self):
        """写入失败时 saved 保持不变，临时文件被清理，之后可以重新保存。"""
        store = self._store()
        store.set_save("a", "1")
        prior = store.saved

        store.set("a", "2")
        with mock.patch("kconf.utils.os.replace", side_effect=OSError("disk full")):
            with self.assertRaises(OSError):
                store.save()
        self.assertEqual(store.saved, prior)
        self.assertEqual([p.name for p in store.dir.iterdir()], ["config.json"])
        self.assertEqual(ConfigStore.from_file(store.path, self.dir).get("a"), "1")

        store.save()
        self.assertEqual(ConfigStore.from_file(store.path, self.dir).get("a"), "2")


class RWLockTest(unittest.TestCase):

    def test_readers_share_writer_excludes(self):
        lock = RWLock()
        lock.acquire_read()
        lock.acquire_read()

        acquired = threading.Event()

        def writer():
            with lock.write():
                acquired.set()

        t = threading.Thread(target=writer)
        t.start()
        self.assertFalse(acquired.wait(0.05))
        lock.release_read()
        self.assertFalse(acquired.wait(0.05))
        lock.release_read()
        self.assertTrue(acquired.wait(2))
        t.join()

    def test_abandoned_writer_wakes_readers(self):
        """等待中的写者放弃获取后，被它挡住的读者应立即被唤醒。"""
        lock = RWLock()
        lock.acquire_read()
        real_wait = lock._cond.wait
        writer_thread = None

        def wait(timeout=None):
            if threading.current_thread() is writer_thread:
                real_wait(0.2)
                raise RuntimeError("interrupted")
            return real_wait(timeout)

        lock._cond.wait = wait
        writer_failed = threading.Event()
        reader_in = threading.Event()

        def writer():
            try:
                lock.acquire_write()
            except RuntimeError:
                writer_failed.set()

        def reader():
            with lock.read():
                reader_in.set()

        writer_thread = threading.Thread(target=writer)
        writer_thread.start()
        time.sleep(0.05)
        reader_thread = threading.Thread(target=reader)
        reader_thread.start()

        self.assertTrue(writer_failed.wait(2))
        # 第一个读锁仍被持有，读者只能由放弃的写者唤醒
        self.assertTrue(reader_in.wait(2))
        lock.release_read()
        writer_thread.join()
        reader_thread.join()


class ResolveConfigDirTest(unittest.TestCase):

    def test_xdg_config_home(self):
        with mock.patch.dict(os.environ, {"XDG_CONFIG_HOME": "testdata"}):
            self.assertEqual(resolve_config_dir("myprog"), Path("testdata") / "myprog")

    def test_home_fallbacks(self):
        home = Path(tempfile.mkdtemp(prefix="kconf-home-"))
        self.addCleanup(shutil.rmtree, home, True)
        env = {k: v for k, v in os.environ.items() if k != "XDG_CONFIG_HOME"}
        with mock.patch.dict(os.environ, env, clear=True), \
                mock.patch("pathlib.Path.home", return_value=home):
            self.assertEqual(resolve_config_dir("myprog"), home / ".config" / "myprog")
            (home / ".myprog").mkdir()
            self.assertEqual(resolve_config_dir("myprog"), home / ".myprog")
            (home / ".config").mkdir()
            self.assertEqual(resolve_config_dir("myprog"), home / ".config" / "myprog")


if __name__ == '__main__':
    unittest.main()
