"""Pydantic models for the capabilities a Swift cluster advertises at ``GET /info``.

Only the sections BleepSwift acts on are modeled explicitly. All other
sections (and unknown keys inside the modeled ones) are kept as extras, so
``Capabilities.model_extra`` exposes everything the server reported.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# Digests allowed by Swift's tempurl middleware when it does not list them.
DEFAULT_TEMPURL_DIGESTS = ["sha1", "sha256"]


class _Section(BaseModel):
    model_config = ConfigDict(extra="allow")


class SwiftInfo(_Section):
    """The ``swift`` section: cluster version and global limits."""

    version: str = ""
    max_file_size: int = 0
    max_meta_name_length: int = 0
    max_meta_value_length: int = 0
    max_object_name_length: int = 0
    container_listing_limit: int = 0
    account_listing_limit: int = 0


class BulkDeleteInfo(_Section):
    """Present when the bulk middleware accepts ``?bulk-delete``."""

    max_deletes_per_request: int = 10000
    max_failed_deletes: int = 1000


class BulkUploadInfo(_Section):
    """Present when the bulk middleware accepts ``?extract-archive``."""

    max_containers_per_extraction: int = 10000
    max_failed_extractions: int = 1000


class SLOInfo(_Section):
    """Present when static large objects are supported."""

    max_manifest_segments: int = 1000
    max_manifest_size: int = 8 * 1024 * 1024
    min_segment_size: int = 1


class TempURLInfo(_Section):
    """Present when the tempurl middleware is active."""

    methods: list[str] = Field(default_factory=list)
    allowed_digests: list[str] = Field(default_factory=lambda: list(DEFAULT_TEMPURL_DIGESTS))


class Capabilities(_Section):
    """Capabilities of a Swift cluster. Absent sections are ``None``."""

    swift: Optional[SwiftInfo] = None
    bulk_delete: Optional[BulkDeleteInfo] = None
    bulk_upload: Optional[BulkUploadInfo] = None
    slo: Optional[SLOInfo] = None
    tempurl: Optional[TempURLInfo] = None
