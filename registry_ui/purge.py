"""
Tag retention - decide which tags to keep and purge the rest.

A tag is kept when it is young enough, matches the keep regexp, or is listed
for its repository in the keep file. If fewer than keep_count tags survive,
the newest purge candidates are promoted back until the floor is met. Tags
whose creation time cannot be determined are left out of the run entirely.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Pattern

from pydantic import BaseModel, Field, field_validator

from registry_ui.logging_config import configure_module_logging
from registry_ui.registry.client import Registry

logger = configure_module_logging("purge")


class PurgeConfigError(Exception):
    """Purge policy cannot be applied; nothing must be deleted."""

    pass


class Reason(str, Enum):
    """Why a tag ended up in the keep or purge list."""

    RECENT = "recent"
    REGEXP = "regexp"
    KEEP_LIST = "keep_list"
    MIN_COUNT = "min_count"
    EXPIRED = "expired"


class PurgePolicy(BaseModel):
    """Keep policy for the purge task."""

    keep_days: int = Field(90, ge=0, description="Keep tags at most this old")
    keep_count: int = Field(2, ge=0, description="Always keep this many newest tags")
    keep_regexp: str = Field("", description="Always keep tags matching this regexp")
    keep_from_file: str = Field(
        "", description="JSON file of repository -> tag names to keep"
    )

    @field_validator("keep_regexp")
    @classmethod
    def regexp_compiles(cls, v):
        if v:
            try:
                re.compile(v)
            except re.error as e:
                raise ValueError(f"invalid keep_regexp {v!r}: {e}")
        return v

    def compiled_regexp(self) -> Optional[Pattern]:
        return re.compile(self.keep_regexp) if self.keep_regexp else None


@dataclass
class TagData:
    name: str
    created: datetime

    def __str__(self):
        return f'"{self.name} <{self.created:%Y-%m-%d %H:%M:%S}>"'


@dataclass
class RetentionDecision:
    tag: TagData
    keep: bool
    reason: Reason


@dataclass
class RepositoryPlan:
    """Keep and purge lists of one repository, newest first."""

    repository: str
    tags: List[TagData] = field(default_factory=list)
    keep: List[RetentionDecision] = field(default_factory=list)
    purge: List[RetentionDecision] = field(default_factory=list)

    @property
    def keep_names(self) -> List[str]:
        return [d.tag.name for d in self.keep]

    @property
    def purge_names(self) -> List[str]:
        return [d.tag.name for d in self.purge]


@dataclass
class PurgePlan:
    repositories: Dict[str, RepositoryPlan] = field(default_factory=dict)

    @property
    def purge_count(self) -> int:
        return sum(len(p.purge) for p in self.repositories.values())

    def sorted_repositories(self) -> List[str]:
        return sorted(self.repositories)

    def to_dict(self) -> Dict[str, Dict[str, List[str]]]:
        return {
            repo: {
                "keep": self.repositories[repo].keep_names,
                "purge": self.repositories[repo].purge_names,
            }
            for repo in self.sorted_repositories()
        }


@dataclass
class PurgeResult:
    plan: PurgePlan
    dry_run: bool
    deleted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def load_keep_list(path: str) -> Dict[str, List[str]]:
    """
    Load per-repository tag names to always keep.

    Args:
        path: JSON file like {"team/app": ["stable", "1.0"]}

    Raises:
        PurgeConfigError: If the file is missing, unreadable or malformed
    """
    try:
        data = json.loads(Path(path).read_text())
    except OSError as e:
        raise PurgeConfigError(f"Cannot read {path}: {e}")
    except ValueError as e:
        raise PurgeConfigError(f"Cannot parse {path}: {e}")

    if not isinstance(data, dict):
        raise PurgeConfigError(f"{path} must map repositories to lists of tags")

    keep_list = {}
    for repo, tags in data.items():
        if isinstance(tags, str):
            tags = [tags]
        if not isinstance(tags, list):
            raise PurgeConfigError(f"{path}: tags of {repo} must be a list")
        keep_list[repo] = [str(t) for t in tags]
    return keep_list


def sort_tags(tags: List[TagData]) -> List[TagData]:
    """Newest first; equal timestamps by name, descending."""
    return sorted(tags, key=lambda t: (t.created, t.name), reverse=True)


def classify_tags(
    repository: str,
    tags: List[TagData],
    policy: PurgePolicy,
    keep_list: Optional[List[str]] = None,
    now: Optional[datetime] = None,
) -> RepositoryPlan:
    """
    Split the tags of one repository into keep and purge lists.

    Args:
        repository: Repository path
        tags: Tags with known creation time
        policy: Keep policy
        keep_list: Tag names to always keep for this repository
        now: Reference time (UTC now by default)

    Returns:
        RepositoryPlan with both lists ordered newest first
    """
    now = now or datetime.now(timezone.utc)
    regexp = policy.compiled_regexp()
    keep_names = set(keep_list or [])
    plan = RepositoryPlan(repository=repository, tags=sort_tags(tags))

    for tag in plan.tags:
        days_old = int((now - tag.created).total_seconds() // 86400)
        if days_old <= policy.keep_days:
            plan.keep.append(RetentionDecision(tag, True, Reason.RECENT))
        elif regexp is not None and regexp.search(tag.name):
            plan.keep.append(RetentionDecision(tag, True, Reason.REGEXP))
        elif tag.name in keep_names:
            plan.keep.append(RetentionDecision(tag, True, Reason.KEEP_LIST))
        else:
            plan.purge.append(RetentionDecision(tag, False, Reason.EXPIRED))

    # Keep minimal count of tags no matter how old they are
    if len(plan.keep) < policy.keep_count:
        take = min(policy.keep_count - len(plan.keep), len(plan.purge))
        promoted, plan.purge = plan.purge[:take], plan.purge[take:]
        plan.keep.extend(
            RetentionDecision(d.tag, True, Reason.MIN_COUNT) for d in promoted
        )

    return plan


class PurgeEngine:
    """Scans repositories, builds a purge plan and executes it."""

    def __init__(
        self,
        client: Registry,
        policy: PurgePolicy,
        dry_run: bool = False,
        now: Optional[datetime] = None,
    ):
        self.client = client
        self.policy = policy
        self.dry_run = dry_run
        self.now = now

    def _load_keep_lists(self) -> Dict[str, List[str]]:
        if not self.policy.keep_from_file:
            return {}
        keep_lists = load_keep_list(self.policy.keep_from_file)
        logger.info(f"Keeping tags for repos from the file: {keep_lists}")
        return keep_lists

    def scan(self, repos: List[str]) -> Dict[str, List[TagData]]:
        """Fetch creation times of every tag in the repositories."""
        scanned: Dict[str, List[TagData]] = {}
        for repo in repos:
            tags = self.client.list_tags(repo)
            if not tags:
                continue
            logger.info(f"[{repo}] scanning {len(tags)} tags...")
            for tag in tags:
                created = self.client.get_image_created(repo, tag)
                if created is None:
                    # e.g. cosign signatures carry no creation time
                    logger.debug(f"[{repo}] tag with zero creation time: {tag}")
                    continue
                scanned.setdefault(repo, []).append(TagData(tag, created))
        logger.info(f"Scanned {len(repos)} repositories.")
        return scanned

    def build_plan(self, repos: Optional[List[str]] = None) -> PurgePlan:
        """
        Build the purge plan.

        Args:
            repos: Repositories to work on; None walks the whole catalog

        Raises:
            PurgeConfigError: If the keep file cannot be used
        """
        keep_lists = self._load_keep_lists()

        if repos:
            logger.info(
                f"Working on repositories {repos} to scan their tags and creation dates..."
            )
        else:
            logger.info("Scanning registry for repositories, tags and their creation dates...")
            repos = self.client.repository_paths(use_cache=False)

        scanned = self.scan(repos)
        now = self.now or datetime.now(timezone.utc)

        logger.info(
            f"Filtering out tags for purging: keep {self.policy.keep_days} days, "
            f"keep count {self.policy.keep_count}"
        )
        if self.policy.keep_regexp:
            logger.info(f"Keeping tags matching regexp: {self.policy.keep_regexp}")

        plan = PurgePlan()
        for repo in sorted(scanned):
            repo_plan = classify_tags(
                repo, scanned[repo], self.policy, keep_lists.get(repo), now
            )
            plan.repositories[repo] = repo_plan
            logger.info(
                f"[{repo}] All {len(repo_plan.tags)}: "
                f"[{', '.join(str(t) for t in repo_plan.tags)}]"
            )
            logger.info(f"[{repo}] Keep {len(repo_plan.keep)}: {repo_plan.keep_names}")
            logger.info(f"[{repo}] Purge {len(repo_plan.purge)}: {repo_plan.purge_names}")

        logger.info(f"There are {plan.purge_count} tags to purge.")
        return plan

    def execute(self, plan: PurgePlan) -> PurgeResult:
        """Delete the planned tags, repository by repository in path order."""
        result = PurgeResult(plan=plan, dry_run=self.dry_run)
        if plan.purge_count and not self.dry_run:
            logger.info("Purging old tags...")

        for repo in plan.sorted_repositories():
            purge = plan.repositories[repo].purge_names
            if not purge:
                continue
            if self.dry_run:
                logger.info(f"[{repo}] Purging {len(purge)} tags... skipped")
                continue
            logger.info(f"[{repo}] Purging {len(purge)} tags...")
            for tag in purge:
                if self.client.delete_tag(repo, tag):
                    result.deleted.append(f"{repo}:{tag}")
                else:
                    result.failed.append(f"{repo}:{tag}")

        if result.failed:
            logger.warning(f"Failed to delete {len(result.failed)} tags: {result.failed}")
        logger.info("Done.")
        return result

    def run(self, repos: Optional[List[str]] = None) -> PurgeResult:
        if self.dry_run:
            logger.warning("Dry-run mode enabled.")
        return self.execute(self.build_plan(repos))


def purge_old_tags(
    client: Registry,
    policy: PurgePolicy,
    dry_run: bool = False,
    repos: Optional[List[str]] = None,
) -> Optional[PurgeResult]:
    """
    Purge old tags according to the policy.

    Returns:
        PurgeResult, or None when the policy could not be applied
    """
    try:
        return PurgeEngine(client, policy, dry_run=dry_run).run(repos)
    except PurgeConfigError as e:
        logger.warning(str(e))
        logger.error("Not purging anything!")
        return None
