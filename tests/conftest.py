"""Shared fixtures for tests."""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from unittest.mock import MagicMock, Mock

import pytest
import requests

from registry_ui.registry.cache import CatalogCache
from registry_ui.registry.client import Registry
from registry_ui.registry.models import (
    MT_DOCKER_LIST,
    MT_DOCKER_MANIFEST,
    RegistryConfig,
)

REGISTRY_URL = "http://registry.test:5000"

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

IMAGE_MANIFEST = {
    "schemaVersion": 2,
    "mediaType": MT_DOCKER_MANIFEST,
    "config": {
        "mediaType": "application/vnd.docker.container.image.v1+json",
        "size": 1469,
        "digest": "sha256:feb5d9fea6a5e9606aa995e879d862b825965ba48de054caab5ef356dc6b3412",
    },
    "layers": [
        {
            "mediaType": "application/vnd.docker.image.rootfs.diff.tar.gzip",
            "size": 2814446,
            "digest": "sha256:2408cc74d12b6cd092bb8b516ba7d5e290f485d3eb9672efc00f0583730179e8",
        },
        {
            "mediaType": "application/vnd.docker.image.rootfs.diff.tar.gzip",
            "size": 1000,
            "digest": "sha256:7b1a6ab2e44dbac178598dabe7cff59bd67233dba0b27e4fbd1f9d4b3c877a54",
        },
    ],
}

IMAGE_CONFIG = {
    "architecture": "amd64",
    "os": "linux",
    "created": "2024-05-20T10:11:12.123456789Z",
    "config": {"Env": ["PATH=/usr/local/bin"]},
}

MANIFEST_LIST = {
    "schemaVersion": 2,
    "mediaType": MT_DOCKER_LIST,
    "manifests": [
        {
            "mediaType": MT_DOCKER_MANIFEST,
            "size": 528,
            "digest": "sha256:aaaa000000000000000000000000000000000000000000000000000000000001",
            "platform": {"architecture": "arm64", "os": "linux", "variant": "v8"},
        },
        {
            "mediaType": MT_DOCKER_MANIFEST,
            "size": 528,
            "digest": "sha256:aaaa000000000000000000000000000000000000000000000000000000000002",
            "platform": {"architecture": "amd64", "os": "linux"},
        },
    ],
}

SCHEMA1_MANIFEST = {
    "schemaVersion": 1,
    "name": "legacy/app",
    "tag": "1.0",
    "architecture": "amd64",
    "fsLayers": [{"blobSum": "sha256:a3ed95ca"}, {"blobSum": "sha256:b3ed95ca"}],
    "history": [
        {"v1Compatibility": json.dumps({"created": "2019-01-02T03:04:05Z", "Size": 100})},
        {"v1Compatibility": json.dumps({"created": "2019-01-01T00:00:00Z", "Size": 50})},
    ],
}


def make_response(
    status: int = 200,
    json_data: Any = None,
    headers: Optional[Dict[str, str]] = None,
    content: Optional[bytes] = None,
) -> Mock:
    """Build a requests.Response stand-in."""
    response = Mock()
    response.status_code = status
    response.headers = headers or {}
    if content is None:
        content = json.dumps(json_data).encode() if json_data is not None else b""
    response.content = content
    response.text = content.decode("utf-8", errors="replace")
    if json_data is not None:
        response.json = Mock(return_value=json_data)
    else:
        response.json = Mock(side_effect=ValueError("No JSON body"))

    def raise_for_status():
        if status >= 400:
            raise requests.HTTPError(f"{status} Error", response=response)

    response.raise_for_status = Mock(side_effect=raise_for_status)
    return response


@pytest.fixture
def registry_config() -> RegistryConfig:
    return RegistryConfig(url=REGISTRY_URL, username="user", password="secret")


@pytest.fixture
def session() -> MagicMock:
    """requests session answering the anonymous /v2/ probe with 200."""
    mock_session = MagicMock()
    mock_session.get.return_value = make_response(200, {})
    return mock_session


@pytest.fixture
def cache() -> CatalogCache:
    return CatalogCache()


@pytest.fixture
def registry(registry_config, session, cache) -> Registry:
    """Registry client on an open (no auth) registry."""
    return Registry(registry_config, cache=cache, session=session)


@pytest.fixture
def days_ago():
    """Build creation timestamps relative to NOW."""

    def _days_ago(days: float) -> datetime:
        return NOW - timedelta(days=days)

    return _days_ago
