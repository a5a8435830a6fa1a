"""Deterministic names for pooled accounts, containers, blobs and URIs.

Every controller process of one cluster derives the same names from the
cluster identity, so the pool can be rebuilt from a plain account listing
without a separate registry.
"""

from __future__ import annotations

import zlib
from dataclasses import dataclass
from urllib.parse import urlparse

from blobdisk.exceptions import InvalidDiskURIError

POOLED_ACCOUNT_PREFIX = "pvc"
DEDICATED_ACCOUNT_PREFIX = "p"
ACCOUNT_NUMBER_WIDTH = 3
VHD_EXTENSION = ".vhd"


def make_crc32(value: str) -> str:
    """Return the CRC32 (IEEE) checksum of *value* as a decimal string."""
    return str(zlib.crc32(value.encode("utf-8")) & 0xFFFFFFFF)


def split_disk_uri(disk_uri: str) -> tuple[str, str, str]:
    """Split a disk URI into ``(account, container, blob)``."""
    parsed = urlparse(disk_uri)
    if not parsed.netloc:
        raise InvalidDiskURIError(f"Disk URI {disk_uri!r} has no host")
    account = parsed.netloc.split(".", 1)[0]
    segments = [s for s in parsed.path.split("/") if s]
    if len(segments) < 2 or not account:
        raise InvalidDiskURIError(
            f"Disk URI {disk_uri!r} is not of the form https://<account>.<host>/<container>/<blob>",
        )
    return account, segments[0], segments[-1]


@dataclass(frozen=True)
class ClusterNaming:
    """Names derived once from the cluster identity.

    Built at controller construction and shared by reference with every
    component that needs to recognise or produce pool resources.
    """

    subscription_id: str
    resource_group: str
    location: str
    storage_endpoint_suffix: str = "core.windows.net"

    @property
    def cluster_hash(self) -> str:
        return make_crc32(self.resource_group + self.location + self.subscription_id)

    @property
    def container_name(self) -> str:
        """Default container shared by every pooled account of the cluster."""
        return self.cluster_hash

    @property
    def account_prefix(self) -> str:
        return f"{POOLED_ACCOUNT_PREFIX}{self.cluster_hash}"

    def account_name(self, number: int) -> str:
        """Pooled account name for sequence *number*, zero-padded."""
        return f"{self.account_prefix}{number:0{ACCOUNT_NUMBER_WIDTH}d}"

    def account_number(self, account_name: str) -> int:
        """Trailing sequence number of a pooled account name (0 if unparsable)."""
        suffix = account_name[-ACCOUNT_NUMBER_WIDTH:]
        return int(suffix) if suffix.isdigit() else 0

    def is_pooled_account(self, account_name: str) -> bool:
        """True only for ``{prefix}{NNN}``; a longer hash sharing our prefix is foreign."""
        prefix, suffix = account_name[:-ACCOUNT_NUMBER_WIDTH], account_name[-ACCOUNT_NUMBER_WIDTH:]
        return prefix == self.account_prefix and suffix.isdigit()

    def dedicated_account_name(self, disk_name: str) -> str:
        """Single-purpose account name for a disk that must not share an account."""
        digest = make_crc32(self.subscription_id + self.resource_group + disk_name)
        return f"{DEDICATED_ACCOUNT_PREFIX}{digest}"

    @staticmethod
    def blob_name(disk_name: str) -> str:
        return f"{disk_name}{VHD_EXTENSION}"

    def blob_endpoint(self, account_name: str) -> str:
        return f"https://{account_name}.blob.{self.storage_endpoint_suffix}"

    def disk_uri(self, account_name: str, blob_name: str) -> str:
        return f"{self.blob_endpoint(account_name)}/{self.container_name}/{blob_name}"

    def is_cluster_disk(self, disk_uri: str) -> bool:
        """Whether *disk_uri* lives in this cluster's default container."""
        try:
            _, container, _ = split_disk_uri(disk_uri)
        except InvalidDiskURIError:
            return False
        return container == self.container_name
