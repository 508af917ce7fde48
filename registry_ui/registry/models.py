from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, HttpUrl, field_validator

# Manifest media types
MT_SCHEMA1 = "application/vnd.docker.distribution.manifest.v1+json"
MT_SCHEMA1_SIGNED = "application/vnd.docker.distribution.manifest.v1+prettyjws"
MT_DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
MT_DOCKER_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
MT_OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
MT_OCI_INDEX = "application/vnd.oci.image.index.v1+json"

SCHEMA1_TYPES = (MT_SCHEMA1, MT_SCHEMA1_SIGNED)
IMAGE_TYPES = (MT_DOCKER_MANIFEST, MT_OCI_MANIFEST)
INDEX_TYPES = (MT_DOCKER_LIST, MT_OCI_INDEX)

# Accept header that lets the registry pick whatever it stores for a reference
ACCEPT_ANY_MANIFEST = ", ".join(
    [MT_OCI_INDEX, MT_DOCKER_LIST, MT_OCI_MANIFEST, MT_DOCKER_MANIFEST, MT_SCHEMA1_SIGNED]
)


class CatalogResponse(BaseModel):
    """OCI registry catalog response"""

    repositories: List[str] = Field(default_factory=list)

    @field_validator("repositories", mode="before")
    @classmethod
    def null_as_empty(cls, v):
        return v or []


class TagsResponse(BaseModel):
    """OCI registry tags list response"""

    name: str = ""
    tags: List[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def null_as_empty(cls, v):
        # Registries answer "tags": null for a repository whose tags were all deleted
        return v or []


class TokenResponse(BaseModel):
    """Token endpoint response"""

    token: Optional[str] = None
    access_token: Optional[str] = None

    @property
    def value(self) -> str:
        # Some token issuers only fill access_token
        return self.token or self.access_token or ""


class Descriptor(BaseModel):
    """Content descriptor inside a manifest"""

    mediaType: str = ""
    digest: str = ""
    size: int = 0
    platform: Optional[Dict[str, Any]] = None


class Manifest(BaseModel):
    """A manifest document as returned for one Accept media type"""

    repository: str
    reference: str
    media_type: str = ""
    digest: str = ""
    body: Dict[str, Any] = Field(default_factory=dict)
    raw: bytes = b""

    def matches(self, media_type: str) -> bool:
        """Whether the registry answered with the requested media type."""
        if not self.body:
            return False
        if media_type in SCHEMA1_TYPES:
            return self.media_type in SCHEMA1_TYPES
        return self.media_type == media_type

    @property
    def is_index(self) -> bool:
        return self.media_type in INDEX_TYPES

    @property
    def is_image(self) -> bool:
        return self.media_type in IMAGE_TYPES

    @property
    def is_schema1(self) -> bool:
        return self.media_type in SCHEMA1_TYPES

    @property
    def layers(self) -> List[Descriptor]:
        return [
            Descriptor.model_validate(layer) for layer in self.body.get("layers") or []
        ]

    @property
    def manifests(self) -> List[Descriptor]:
        return [Descriptor.model_validate(m) for m in self.body.get("manifests") or []]

    @property
    def config(self) -> Optional[Descriptor]:
        config = self.body.get("config")
        return Descriptor.model_validate(config) if config else None


class ImageInfo(BaseModel):
    """Everything the UI shows about a single tag or digest"""

    repository: str
    reference: str
    digest: str = ""
    media_type: str = ""
    is_image_index: bool = False
    is_image: bool = False
    platforms: str = ""
    created: Optional[datetime] = None
    image_size: int = 0
    layers_count: int = 0
    config_image_id: str = ""
    manifest: Dict[str, Any] = Field(default_factory=dict)
    config_file: Dict[str, Any] = Field(default_factory=dict)


class RegistryConfig(BaseModel):
    """Registry client configuration"""

    url: HttpUrl = Field(default="http://localhost:5000")
    username: str = ""
    password: str = ""
    verify_tls: bool = True
    timeout: int = Field(default=30, gt=0)
    catalog_page_size: int = Field(default=100, gt=0)
    user_agent: str = "registry-ui"

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v):
        return str(v).rstrip("/")

    @property
    def hostname(self) -> str:
        return str(self.url).split("://", 1)[-1].split("/", 1)[0]
