"""
Catalog and tag-count cache with its background refresh jobs.

The catalog snapshot and the tag-count map are the state shared between the
refresh threads, request handlers and the purge task. Each has its own lock,
held only for the read or write itself. The catalog is replaced wholesale by
publishing a new tuple, so readers never see a half-updated list.
"""

import threading
import time
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from registry_ui.logging_config import configure_module_logging
from registry_ui.registry.exceptions import RegistryConnectionError
from registry_ui.registry.utils import group_by_namespace, unique_sorted

if TYPE_CHECKING:
    from registry_ui.registry.client import Registry

logger = configure_module_logging("registry.cache")


class CatalogCache:
    """Process-wide repository catalog and per-repository tag counts."""

    def __init__(self):
        self._repos: Tuple[str, ...] = ()
        self._ready = False
        self._repos_lock = threading.Lock()
        self._tag_counts: Dict[str, int] = {}
        self._counts_lock = threading.Lock()

    @property
    def is_ready(self) -> bool:
        """Whether a catalog walk has completed at least once."""
        with self._repos_lock:
            return self._ready

    def repositories(self) -> List[str]:
        with self._repos_lock:
            return list(self._repos)

    def publish(self, repos: List[str]) -> bool:
        """
        Replace the catalog snapshot.

        An empty list is treated as a transient failure: the previous snapshot
        is kept. Returns whether the snapshot was replaced.
        """
        snapshot = tuple(repos)
        with self._repos_lock:
            self._ready = True
            if not snapshot:
                return False
            self._repos = snapshot
        return True

    def namespaces(self) -> List[str]:
        return unique_sorted(group_by_namespace(self.repositories()).keys())

    def set_tag_count(self, repository: str, count: int) -> None:
        with self._counts_lock:
            self._tag_counts[repository] = count

    def decrement_tag_count(self, repository: str) -> None:
        with self._counts_lock:
            current = self._tag_counts.get(repository, 0)
            self._tag_counts[repository] = max(current - 1, 0)

    def tag_count(self, repository: str) -> Optional[int]:
        with self._counts_lock:
            return self._tag_counts.get(repository)

    def tag_counts(self) -> Dict[str, int]:
        with self._counts_lock:
            return dict(self._tag_counts)

    def sub_repo_tag_counts(self, repo_path: str, names: List[str]) -> Dict[str, int]:
        """
        Sum tag counts for each name under repo_path, including nested repositories.

        Example:
            With counts {"team/app": 3, "team/app/worker": 2},
            sub_repo_tag_counts("team", ["app"]) == {"team/app": 5}
        """
        counts = self.tag_counts()
        result: Dict[str, int] = {}
        for name in names:
            sub_repo = f"{repo_path}/{name}" if repo_path else name
            result[sub_repo] = sum(
                value
                for key, value in counts.items()
                if key == sub_repo or key.startswith(sub_repo + "/")
            )
        return result


class BackgroundRefresher:
    """Runs the catalog refresh loop and the tag-count loop in daemon threads."""

    def __init__(
        self,
        client: "Registry",
        catalog_interval: int = 10,
        tags_count_interval: int = 60,
    ):
        """
        Args:
            client: Registry client whose cache is refreshed
            catalog_interval: Minutes between catalog walks, 0 disables repeats
            tags_count_interval: Minutes between tag-count passes, 0 disables them
        """
        self.client = client
        self.catalog_interval = catalog_interval
        self.tags_count_interval = tags_count_interval
        self._stop = threading.Event()
        self._catalog_thread: Optional[threading.Thread] = None
        self._counter_thread: Optional[threading.Thread] = None

    @property
    def cache(self) -> CatalogCache:
        return self.client.cache

    def start(self) -> None:
        """
        Run the first catalog refresh and start the background loops.

        Raises:
            RegistryConnectionError: If the first catalog refresh fails
        """
        if not self.refresh_catalog():
            raise RegistryConnectionError(
                "Initial catalog refresh failed, nothing to serve"
            )

        if self.tags_count_interval > 0:
            # Started once, after the first catalog is available
            self._counter_thread = threading.Thread(
                target=self._count_tags_loop, name="count-tags", daemon=True
            )
            self._counter_thread.start()

        if self.catalog_interval > 0:
            self._catalog_thread = threading.Thread(
                target=self._catalog_loop, name="refresh-catalog", daemon=True
            )
            self._catalog_thread.start()
        else:
            logger.warning(
                "Catalog refresh is disabled in the config and will not run anymore."
            )

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        for thread in (self._catalog_thread, self._counter_thread):
            if thread is not None:
                thread.join(timeout)

    def refresh_catalog(self) -> bool:
        start = time.monotonic()
        logger.info("[RefreshCatalog] Started reading catalog...")
        ok = self.client.refresh_catalog()
        if not ok:
            logger.error("[RefreshCatalog] Catalog refresh failed, keeping previous list")
            return False
        logger.info(
            f"[RefreshCatalog] Job complete ({time.monotonic() - start:.1f}s): "
            f"{len(self.cache.repositories())} repos found"
        )
        return True

    def count_tags(self) -> None:
        start = time.monotonic()
        logger.info("[CountTags] Started counting tags...")
        for repo in self.cache.repositories():
            if self._stop.is_set():
                return
            self.client.list_tags(repo)
        logger.info(f"[CountTags] Job complete ({time.monotonic() - start:.1f}s).")

    def _catalog_loop(self) -> None:
        while not self._stop.wait(self.catalog_interval * 60):
            try:
                self.refresh_catalog()
            except Exception as e:
                logger.error(f"[RefreshCatalog] Unexpected error: {e}", exc_info=True)

    def _count_tags_loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.count_tags()
            except Exception as e:
                logger.error(f"[CountTags] Unexpected error: {e}", exc_info=True)
            if self._stop.wait(self.tags_count_interval * 60):
                break
