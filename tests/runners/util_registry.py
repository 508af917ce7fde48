"""
Registry smoke test runner - exercises the client against a live registry
How to run:
   uv run python -m tests.runners.util_registry [config.yml]

Read-only: it never deletes anything, the purge runs in dry-run mode.
"""

import sys

from registry_ui.config import ConfigError, load_config
from registry_ui.purge import purge_old_tags
from registry_ui.registry.client import Registry
from registry_ui.registry.exceptions import RegistryError
from registry_ui.registry.utils import pretty_size


def test_registry_operations(registry: Registry):
    """Walk catalog, tags and image details of the first repositories"""

    # Test 1: Health check
    print("=" * 50)
    print("Testing registry health...")
    if not registry.is_alive():
        print("❌ Registry is not accessible")
        sys.exit(1)
    print(f"✅ Registry is alive (auth: {registry.tokens.scheme})")

    # Test 2: Catalog walk
    print("\n" + "=" * 50)
    print("Testing repository listing...")
    repos = registry.repository_paths(use_cache=False)
    if not registry.cache.is_ready:
        print("❌ Catalog walk failed")
        sys.exit(1)
    print(f"✅ Found {len(repos)} repositories in {len(registry.namespaces())} namespaces")
    for namespace, names in registry.list_repositories().items():
        print(f"  - {namespace}: {len(names)}")

    # Test 3: Tags and image details
    print("\n" + "=" * 50)
    print("Testing tag listing and image info...")
    for repo in repos[:5]:
        tags = registry.list_tags(repo)
        print(f"✅ {repo}: {len(tags)} tags")
        if not tags:
            continue
        info = registry.get_image_info(repo, tags[-1])
        if info is None:
            print(f"❌ Cannot read {repo}:{tags[-1]}")
            continue
        kind = "index" if info.is_image_index else "image"
        print(f"   {tags[-1]} ({kind}) {info.digest[:19]}...")
        print(f"   Platforms: {info.platforms or '-'}")
        print(f"   Size: {pretty_size(info.image_size)} in {info.layers_count} layers")
        print(f"   Created: {registry.get_image_created(repo, tags[-1])}")

    print(f"\nCached tag scopes: {len(registry.tokens.cached_scopes())}")


def test_purge_dry_run(registry: Registry, policy):
    """Show what the configured policy would purge"""
    print("\n" + "=" * 50)
    print("Testing purge plan (dry-run)...")
    result = purge_old_tags(registry, policy, dry_run=True)
    if result is None:
        print("❌ Purge policy could not be applied")
        return
    print(f"✅ {result.plan.purge_count} tags would be purged")
    for repo, lists in result.plan.to_dict().items():
        if lists["purge"]:
            print(f"  - {repo}: keep {len(lists['keep'])}, purge {len(lists['purge'])}")


if __name__ == "__main__":
    try:
        config = load_config(sys.argv[1] if len(sys.argv) > 1 else None)
        with Registry(config.registry_config()) as registry:
            test_registry_operations(registry)
            test_purge_dry_run(registry, config.purge_tags.policy())
        print("\n🎉 All checks passed!")
        sys.exit(0)
    except (ConfigError, RegistryError) as e:
        print(f"\n❌ {e}")
        sys.exit(1)
    except Exception as e:
        print(f"\n💥 Unexpected error: {e}")
        import traceback

        traceback.print_exc()
        sys.exit(1)
