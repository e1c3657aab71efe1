"""
Authenticator metadata lookups (FIDO MDS3).

Only used to give new credentials a friendly display name, so a lookup that
finds nothing is a normal outcome.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from uuid import UUID

from fido2.mds3 import MdsAttestationVerifier, parse_blob
from fido2.webauthn import Aaguid
import structlog

from fidogate.core.config import settings

logger = structlog.get_logger()


@dataclass(frozen=True)
class MetadataEntry:
    aaguid: UUID
    description: Optional[str]


class MetadataService(ABC):
    @abstractmethod
    async def get_entry(self, aaguid: UUID) -> Optional[MetadataEntry]:
        pass


class NullMetadataService(MetadataService):
    """Used when no metadata blob is configured."""

    async def get_entry(self, aaguid: UUID) -> Optional[MetadataEntry]:
        return None


class Mds3MetadataService(MetadataService):
    """Serves entries from a locally downloaded, signature-checked MDS3 blob."""

    def __init__(self, verifier: MdsAttestationVerifier):
        self.verifier = verifier

    @classmethod
    def from_files(cls, blob_path: str, root_cert_path: Optional[str] = None) -> "Mds3MetadataService":
        blob = Path(blob_path).read_bytes()
        trust_root = Path(root_cert_path).read_bytes() if root_cert_path else None
        payload = parse_blob(blob, trust_root)
        logger.info(
            "Loaded authenticator metadata",
            entries=len(payload.entries),
            next_update=str(payload.next_update),
        )
        return cls(MdsAttestationVerifier(payload))

    async def get_entry(self, aaguid: UUID) -> Optional[MetadataEntry]:
        entry = self.verifier.find_entry_by_aaguid(Aaguid(aaguid.bytes))
        if entry is None or entry.metadata_statement is None:
            return None
        return MetadataEntry(aaguid=aaguid, description=entry.metadata_statement.description)


def build_metadata_service() -> MetadataService:
    if not settings.FIDO2_MDS_BLOB_PATH:
        return NullMetadataService()
    try:
        return Mds3MetadataService.from_files(
            settings.FIDO2_MDS_BLOB_PATH, settings.FIDO2_MDS_ROOT_CERT_PATH
        )
    except Exception as e:
        # Display names fall back to the attestation format
        logger.error("Metadata blob could not be loaded", error=str(e))
        return NullMetadataService()
