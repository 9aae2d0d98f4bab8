"""
On-disk artifacts of one order.

Default layout (``OrderFiles.in_directory(<dir>)``):
  <dir>/order            — remote order URL (plain text)
  <dir>/private.pem      — certificate private key (mode 0o600)
  <dir>/public.pem       — certificate public key
  <dir>/csr.crt          — last submitted CSR
  <dir>/certificate.crt  — leaf certificate
  <dir>/fullchain.crt    — leaf + intermediates
  <dir>/cabundle.crt     — issuing CA certificate

Optional slots set to None are never written.  All writes are atomic.
"""
from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from acme_order.jws import load_private_key
from storage.atomic import atomic_write

logger = logging.getLogger(__name__)

# Kept when stale order data is cleaned up, so an issued certificate survives.
PRESERVED_SLOTS = ("certificate", "private_key")


@dataclass
class OrderFiles:
    order: Path
    private_key: Path
    public_key: Path
    csr: Optional[Path] = None
    certificate: Optional[Path] = None
    fullchain: Optional[Path] = None
    cabundle: Optional[Path] = None

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None:
                setattr(self, f.name, Path(value))

    @classmethod
    def in_directory(cls, directory: str | Path, with_chain: bool = True) -> "OrderFiles":
        d = Path(directory)
        return cls(
            order=d / "order",
            private_key=d / "private.pem",
            public_key=d / "public.pem",
            csr=d / "csr.crt",
            certificate=d / "certificate.crt",
            fullchain=d / "fullchain.crt" if with_chain else None,
            cabundle=d / "cabundle.crt" if with_chain else None,
        )

    # ── Slots ─────────────────────────────────────────────────────────────

    def slots(self) -> Dict[str, Path]:
        """Configured slots by name."""
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}

    def has_order_artifacts(self) -> bool:
        return self.order.is_file() and self.private_key.is_file() and self.public_key.is_file()

    # ── Order reference & keys ────────────────────────────────────────────

    def read_order_url(self) -> str:
        return self.order.read_text(encoding="utf-8").strip()

    def write_order_url(self, url: str) -> None:
        atomic_write(self.order, url)

    def write_key_pair(self, private_pem: str, public_pem: str) -> None:
        """Persist a new key pair; an existing private key is moved aside to ``.old``."""
        if self.private_key.is_file():
            os.replace(self.private_key, _old(self.private_key))
            logger.info("Kept previous private key as %s", _old(self.private_key))
        atomic_write(self.private_key, private_pem, mode=stat.S_IRUSR | stat.S_IWUSR)
        atomic_write(self.public_key, public_pem)

    def load_private_key(self):
        return load_private_key(self.private_key)

    def write_csr(self, csr_pem: str) -> None:
        if self.csr is not None:
            atomic_write(self.csr, csr_pem)

    # ── Certificates ──────────────────────────────────────────────────────

    def store_certificates(self, blocks: List[str]) -> List[Path]:
        """
        Write the leaf; with intermediates present also the full chain and the
        CA bundle (second-to-last block).  Returns the paths written.
        """
        written: List[Path] = []
        if not blocks:
            return written

        if self.certificate is not None:
            atomic_write(self.certificate, blocks[0])
            written.append(self.certificate)

        if len(blocks) > 1 and self.fullchain is not None:
            atomic_write(self.fullchain, "".join(b + "\n" for b in blocks))
            written.append(self.fullchain)
            if self.cabundle is not None:
                atomic_write(self.cabundle, blocks[-2])
                written.append(self.cabundle)
        return written

    # ── Cleanup ───────────────────────────────────────────────────────────

    def rename_all_to_old(self) -> List[Path]:
        renamed = []
        for path in self.slots().values():
            if path.is_file():
                os.replace(path, _old(path))
                renamed.append(path)
        return renamed

    def delete_all(self, keep: Iterable[str] = ()) -> List[Path]:
        keep = set(keep)
        deleted = []
        for name, path in self.slots().items():
            if name not in keep and path.is_file():
                path.unlink()
                deleted.append(path)
        return deleted


def _old(path: Path) -> Path:
    return path.with_name(path.name + ".old")
