"""
Tests for atomic file writing and the OrderFiles artifact layout.
"""
from __future__ import annotations

import os
import stat
from pathlib import Path
from unittest.mock import patch

import pytest

from storage.atomic import atomic_write
from storage.order_files import OrderFiles


class TestAtomicWrite:
    """Test atomic_write functionality."""

    def test_creates_file(self, tmp_path):
        path = tmp_path / "test.txt"
        atomic_write(path, "hello world")
        assert path.read_text() == "hello world"

    def test_writes_bytes(self, tmp_path):
        path = tmp_path / "test.bin"
        atomic_write(path, b"\x00\x01")
        assert path.read_bytes() == b"\x00\x01"

    def test_overwrites_existing(self, tmp_path):
        path = tmp_path / "test.txt"
        path.write_text("old content")
        atomic_write(path, "new content")
        assert path.read_text() == "new content"

    def test_no_temp_file_left(self, tmp_path):
        path = tmp_path / "test.txt"
        atomic_write(path, "content")
        assert [p.name for p in tmp_path.iterdir()] == ["test.txt"]

    def test_creates_parent_dirs(self, tmp_path):
        path = tmp_path / "subdir" / "nested" / "test.txt"
        atomic_write(path, "content")
        assert path.read_text() == "content"

    def test_applies_mode(self, tmp_path):
        path = tmp_path / "private.pem"
        atomic_write(path, "secret", mode=stat.S_IRUSR | stat.S_IWUSR)
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_cleans_up_temp_on_error(self, tmp_path):
        path = tmp_path / "test.txt"
        path.write_text("original")

        with patch("storage.atomic.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                atomic_write(path, "new")

        assert path.read_text() == "original"
        assert [p.name for p in tmp_path.iterdir()] == ["test.txt"]


class TestOrderFiles:
    def test_in_directory_layout(self, tmp_path):
        files = OrderFiles.in_directory(tmp_path)
        assert files.order == tmp_path / "order"
        assert files.private_key == tmp_path / "private.pem"
        assert files.cabundle == tmp_path / "cabundle.crt"

    def test_without_chain_slots(self, tmp_path):
        files = OrderFiles.in_directory(tmp_path, with_chain=False)
        assert files.fullchain is None and files.cabundle is None
        assert set(files.slots()) == {"order", "private_key", "public_key", "csr", "certificate"}

    def test_paths_are_coerced(self, tmp_path):
        files = OrderFiles(order=str(tmp_path / "o"), private_key=str(tmp_path / "k"),
                           public_key=str(tmp_path / "p"))
        assert isinstance(files.order, Path)
        assert files.csr is None

    def test_has_order_artifacts_needs_all_three(self, tmp_path):
        files = OrderFiles.in_directory(tmp_path)
        files.write_order_url("https://ca.test/order/1")
        assert not files.has_order_artifacts()
        files.write_key_pair("private", "public")
        assert files.has_order_artifacts()

    def test_write_key_pair_keeps_previous_key(self, tmp_path):
        files = OrderFiles.in_directory(tmp_path)
        files.write_key_pair("first", "pub1")
        files.write_key_pair("second", "pub2")

        assert files.private_key.read_text() == "second"
        assert (tmp_path / "private.pem.old").read_text() == "first"
        assert stat.S_IMODE(files.private_key.stat().st_mode) == 0o600

    def test_store_single_certificate(self, tmp_path):
        files = OrderFiles.in_directory(tmp_path)
        written = files.store_certificates(["LEAF"])
        assert written == [files.certificate]
        assert not files.fullchain.exists()

    def test_store_chain(self, tmp_path):
        files = OrderFiles.in_directory(tmp_path)
        written = files.store_certificates(["LEAF", "INTER", "ROOT"])

        assert written == [files.certificate, files.fullchain, files.cabundle]
        assert files.fullchain.read_text() == "LEAF\nINTER\nROOT\n"
        assert files.cabundle.read_text() == "INTER"

    def test_store_chain_without_fullchain_slot(self, tmp_path):
        files = OrderFiles.in_directory(tmp_path, with_chain=False)
        assert files.store_certificates(["LEAF", "INTER"]) == [files.certificate]

    def test_delete_all_with_keep(self, tmp_path):
        files = OrderFiles.in_directory(tmp_path)
        for path in files.slots().values():
            path.write_text("x")

        files.delete_all(keep=("certificate", "private_key"))

        assert sorted(os.listdir(tmp_path)) == ["certificate.crt", "private.pem"]

    def test_rename_all_to_old(self, tmp_path):
        files = OrderFiles.in_directory(tmp_path)
        files.write_order_url("https://ca.test/order/1")
        files.write_key_pair("k", "p")

        renamed = files.rename_all_to_old()

        assert set(renamed) == {files.order, files.private_key, files.public_key}
        assert sorted(os.listdir(tmp_path)) == ["order.old", "private.pem.old", "public.pem.old"]
