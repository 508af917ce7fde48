import json
from datetime import datetime
import requests
from requests.exceptions import RequestException
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin
from pydantic import ValidationError
from .auth import CATALOG_SCOPE, TokenManager, repository_scope
from .cache import CatalogCache
from .models import (
    ACCEPT_ANY_MANIFEST,
    CatalogResponse,
    ImageInfo,
    Manifest,
    MT_SCHEMA1_SIGNED,
    RegistryConfig,
    TagsResponse,
)
from .utils import (
    calculate_digest,
    group_by_namespace,
    parse_link_next,
    parse_timestamp,
    unique_ordered,
    unique_sorted,
)
from registry_ui.logging_config import configure_module_logging

logger = configure_module_logging("registry.client")


class Registry:
    """Registry protocol v2 client with token auth and a shared catalog cache"""

    def __init__(
        self,
        config: Optional[RegistryConfig] = None,
        cache: Optional[CatalogCache] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            config: Registry connection settings
            cache: Catalog cache shared with the background jobs
            session: Preconfigured requests session

        Raises:
            RegistryConnectionError: If the registry cannot be reached
            RegistryAuthError: If the registry auth scheme is not supported
        """
        self.config = config or RegistryConfig()
        self.url = str(self.config.url)
        self.cache = cache or CatalogCache()
        self._session = session or self._create_session()
        self.tokens = TokenManager(self._session, self.config)
        self.tokens.discover_auth_scheme()

    def _create_session(self) -> requests.Session:
        """Create configured requests session"""
        session = requests.session()
        session.headers.update({"User-Agent": self.config.user_agent})
        session.verify = self.config.verify_tls
        return session

    def _request(
        self,
        method: str,
        url: str,
        scope: str,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        """Send an authorized request; RequestException propagates."""
        kwargs = self.tokens.request_kwargs(scope)
        merged = dict(headers or {})
        merged.update(kwargs.pop("headers", {}))
        logger.debug(f"{method} {url}")
        return self._session.request(
            method, url, headers=merged, timeout=self.config.timeout, **kwargs
        )

    def _absolute(self, url: str) -> str:
        if url.startswith("http://") or url.startswith("https://"):
            return url
        return urljoin(self.url + "/", url)

    def is_alive(self) -> bool:
        """Check if registry is alive"""
        try:
            response = self._session.get(f"{self.url}/v2/", timeout=self.config.timeout)
            return response.status_code in (200, 401)
        except RequestException as e:
            logger.debug(f"Registry health check failed: {e}")
            return False

    def fetch_catalog(self) -> Optional[List[str]]:
        """
        Walk every page of the catalog.

        Returns:
            Full repository list in registry order without duplicates,
            or None if any page failed
        """
        url = f"{self.url}/v2/_catalog?n={self.config.catalog_page_size}"
        repos: List[str] = []
        pages = 0
        try:
            while url:
                response = self._request("GET", url, CATALOG_SCOPE)
                response.raise_for_status()
                page = CatalogResponse.model_validate(response.json())
                repos.extend(page.repositories)
                pages += 1
                logger.debug(f"Catalog page {pages}: {len(page.repositories)} repos")
                next_url = parse_link_next(response.headers.get("Link"))
                url = self._absolute(next_url) if next_url else None

        except RequestException as e:
            logger.error(f"Failed to list repositories: {e}")
            return None
        except (ValueError, ValidationError) as e:
            logger.error(f"Invalid catalog response: {e}")
            return None

        return unique_ordered(repos)

    def refresh_catalog(self) -> bool:
        """
        Walk the catalog and publish it to the cache.

        Returns:
            True if the walk completed, even when it found no repositories
        """
        repos = self.fetch_catalog()
        if repos is None:
            return False
        if not self.cache.publish(repos):
            logger.warning("Catalog looks empty, preserving previous list if any.")
        return True

    def list_repositories(self, use_cache: bool = True) -> Dict[str, List[str]]:
        """
        List repositories grouped by namespace

        Args:
            use_cache: Serve the cached catalog when one is available

        Returns:
            Mapping of namespace to repository names; "library" holds the
            repositories without a namespace
        """
        if use_cache:
            cached = self.cache.repositories()
            if cached:
                return group_by_namespace(cached)

        self.refresh_catalog()
        return group_by_namespace(self.cache.repositories())

    def repository_paths(self, use_cache: bool = True) -> List[str]:
        """Full repository paths, e.g. ["library/nginx", "team/app"]"""
        if not (use_cache and self.cache.repositories()):
            self.refresh_catalog()
        return self.cache.repositories()

    def namespaces(self) -> List[str]:
        return self.cache.namespaces()

    def list_tags(self, repo: str) -> List[str]:
        """
        List all tags for a repository

        Args:
            repo: Repository name (e.g., "team/app")

        Returns:
            Tag names in registry order, empty when unavailable
        """
        url = f"{self.url}/v2/{repo}/tags/list"
        tags: List[str] = []
        try:
            while url:
                response = self._request("GET", url, repository_scope(repo))
                if response.status_code == 404:
                    # Repository has no tags (left), not an error
                    self.cache.set_tag_count(repo, 0)
                    return []
                response.raise_for_status()
                tags.extend(TagsResponse.model_validate(response.json()).tags)
                next_url = parse_link_next(response.headers.get("Link"))
                url = self._absolute(next_url) if next_url else None

        except RequestException as e:
            logger.error(f"Failed to list tags for {repo}: {e}")
            return []
        except (ValueError, ValidationError) as e:
            logger.error(f"Invalid tags response for {repo}: {e}")
            return []

        tags = unique_ordered(tags)
        self.cache.set_tag_count(repo, len(tags))
        return tags

    def get_manifest(
        self, repo: str, reference: str, media_type: str = ACCEPT_ANY_MANIFEST
    ) -> Optional[Manifest]:
        """
        Get a manifest by tag or digest for the requested media type

        Registries answer with whatever they have when the media type does not
        apply (e.g. a plain manifest when a manifest list is requested), so use
        Manifest.matches() to tell whether the answer is the one asked for.

        Args:
            repo: Repository name
            reference: Tag name or digest
            media_type: Accept header value

        Returns:
            Manifest, or None on failure
        """
        url = f"{self.url}/v2/{repo}/manifests/{reference}"
        try:
            response = self._request(
                "GET", url, repository_scope(repo), headers={"Accept": media_type}
            )
            response.raise_for_status()
        except RequestException as e:
            logger.error(f"Failed to get manifest {repo}:{reference}: {e}")
            return None

        raw = response.content
        digest = response.headers.get("Docker-Content-Digest")
        if not digest:
            # Hash the body exactly as received so it matches the registry digest
            digest = calculate_digest(raw)
            logger.debug(f"Computed digest for {repo}:{reference}: {digest}")

        body: Dict[str, Any] = {}
        if raw:
            try:
                body = json.loads(raw)
            except ValueError as e:
                logger.error(f"Invalid manifest response for {repo}:{reference}: {e}")
                return None
            if not isinstance(body, dict):
                body = {}

        content_type = response.headers.get("Content-Type", "").split(";")[0].strip()
        resolved_type = body.get("mediaType") or content_type
        if not resolved_type and body.get("schemaVersion") == 1:
            resolved_type = MT_SCHEMA1_SIGNED

        return Manifest(
            repository=repo,
            reference=reference,
            media_type=resolved_type,
            digest=digest,
            body=body,
            raw=raw,
        )

    def get_blob_json(self, repo: str, digest: str) -> Dict[str, Any]:
        """Get a JSON blob (e.g. an image config) by digest"""
        url = f"{self.url}/v2/{repo}/blobs/{digest}"
        try:
            response = self._request("GET", url, repository_scope(repo))
            response.raise_for_status()
            data = response.json()
        except RequestException as e:
            logger.error(f"Failed to get blob {repo}@{digest}: {e}")
            return {}
        except ValueError as e:
            logger.error(f"Invalid blob {repo}@{digest}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def get_image_info(self, repo: str, reference: str) -> Optional[ImageInfo]:
        """
        Get image info by the reference - tag name or digest sha256

        Returns:
            ImageInfo, or None when the reference cannot be resolved
        """
        manifest = self.get_manifest(repo, reference)
        if manifest is None or not manifest.body:
            return None

        info = ImageInfo(
            repository=repo,
            reference=reference,
            digest=manifest.digest,
            media_type=manifest.media_type,
            manifest=manifest.body,
        )

        if manifest.is_index:
            info.is_image_index = True
            platforms = [_format_platform(m.platform) for m in manifest.manifests]
            info.platforms = ", ".join(unique_sorted(p for p in platforms if p))
            return info

        if manifest.is_schema1:
            info.is_image = True
            history = manifest.body.get("history") or []
            compat = [_v1_compatibility(h) for h in history]
            info.layers_count = len(manifest.body.get("fsLayers") or [])
            info.image_size = sum(int(c.get("Size") or 0) for c in compat)
            if compat:
                info.created = parse_timestamp(compat[0].get("created"))
                info.config_file = compat[0]
            arch = manifest.body.get("architecture", "")
            info.platforms = f"linux/{arch}" if arch else ""
            return info

        if not manifest.is_image:
            logger.error(
                f"Image reference {repo}:{reference} is neither Index nor Image "
                f"({manifest.media_type})"
            )
            return None

        info.is_image = True
        layers = manifest.layers
        info.layers_count = len(layers)
        info.image_size = sum(layer.size for layer in layers)
        config = manifest.config
        if config is not None and config.digest:
            # Image ID as shown by "docker images"
            info.config_image_id = config.digest[7:19]
            config_file = self.get_blob_json(repo, config.digest)
            info.config_file = config_file
            info.created = parse_timestamp(config_file.get("created"))
            info.platforms = _format_platform(config_file)
        return info

    def get_image_created(self, repo: str, reference: str) -> Optional[datetime]:
        """
        Get image creation time

        A manifest list resolves to its first sub-image, which is fine as
        platform images of one push share the build time.

        Returns:
            Timezone-aware datetime, or None when unknown (e.g. signature
            manifests without a creation time)
        """
        manifest = self.get_manifest(repo, reference)
        if manifest is None or not manifest.body:
            return None

        if manifest.is_index:
            children = [m for m in manifest.manifests if m.digest]
            if not children:
                return None
            child = children[0]
            child_type = child.mediaType or ACCEPT_ANY_MANIFEST
            manifest = self.get_manifest(repo, child.digest, child_type)
            if manifest is None or not manifest.body:
                return None
            if child.mediaType and not manifest.matches(child.mediaType):
                logger.error(
                    f"Sub-manifest {repo}@{child.digest} is {manifest.media_type}, "
                    f"index declares {child.mediaType}"
                )
                return None

        if manifest.is_schema1:
            history = manifest.body.get("history") or []
            if not history:
                return None
            return parse_timestamp(_v1_compatibility(history[0]).get("created"))

        config = manifest.config
        if config is None or not config.digest:
            return None
        return parse_timestamp(self.get_blob_json(repo, config.digest).get("created"))

    def delete_tag(self, repo: str, tag: str) -> bool:
        """
        Delete image tag

        The registry only deletes by digest, so the tag is resolved first.
        Note, it will also delete any other tags pointing to the same digest!

        Returns:
            True if the registry accepted the deletion
        """
        if tag.startswith("sha256:"):
            digest = tag
        else:
            manifest = self.get_manifest(repo, tag)
            if manifest is None:
                logger.error(f"Cannot resolve {repo}:{tag} to a digest, not deleting")
                return False
            digest = manifest.digest

        url = f"{self.url}/v2/{repo}/manifests/{digest}"
        try:
            response = self._request("DELETE", url, repository_scope(repo))
        except RequestException as e:
            logger.error(f"Error deleting image {repo}:{tag}: {e}")
            return False

        if response.status_code != 202:
            logger.error(
                f"Error deleting image {repo}:{tag}: "
                f"{response.status_code} - {response.text}"
            )
            return False

        self.cache.decrement_tag_count(repo)
        logger.info(f"Image {repo}:{tag} ({digest}) has been successfully deleted.")
        return True

    def close(self):
        """Close the underlying session"""
        self._session.close()

    def __enter__(self):
        return self

    def __exit__(self, exec_type, exec_val, exec_tb):
        self.close()


def _format_platform(platform: Optional[Dict[str, Any]]) -> str:
    if not platform:
        return ""
    parts = [platform.get("os", ""), platform.get("architecture", "")]
    if platform.get("variant"):
        parts.append(platform["variant"])
    return "/".join(p for p in parts if p)


def _v1_compatibility(entry: Dict[str, Any]) -> Dict[str, Any]:
    try:
        data = json.loads(entry.get("v1Compatibility") or "{}")
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
