"""Invoke tasks for testing, linting, and formatting.

Run tasks with: invoke TASK_NAME

Test Examples:
    invoke test              # Run all tests
    invoke test.unit        # Run unit tests only
    invoke test.api         # Run API endpoint tests only
    invoke test.coverage    # Generate coverage reports

Linting Examples:
    invoke lint.flake8      # Check code style with flake8
    invoke lint.black       # Format code with black
    invoke lint.black-check # Check if code needs formatting

Purge Examples:
    invoke purge --dry-run  # Show what the purge would delete
"""

from invoke import Collection, task


@task(help={"verbose": "Show verbose output"})
def test(ctx, verbose=False):
    """Run all tests."""
    cmd = "uv run pytest"
    if verbose:
        cmd += " -v"
    ctx.run(cmd)


@task
def unit(ctx):
    """Run unit tests only."""
    ctx.run("uv run pytest tests/unit")


@task
def api(ctx):
    """Run API endpoint tests only."""
    ctx.run("uv run pytest tests/api")


@task(help={"file": "Specific test file to run", "name": "Test name or pattern"})
def specific(ctx, file=None, name=None):
    """Run specific test file, class, or function.

    Examples:
        invoke test.specific --file tests/unit/test_purge.py
        invoke test.specific --file tests/unit/test_purge.py --name TestClassifyTags
    """
    if not file and not name:
        print("Error: Please specify --file and/or --name")
        return

    cmd = "uv run pytest"
    if file:
        cmd += f" {file}"
    if name:
        cmd += f"::{name}" if file else f" -k {name}"

    ctx.run(cmd)


@task
def coverage(ctx):
    """Generate all coverage reports (HTML, terminal, and XML)."""
    ctx.run(
        "uv run pytest --cov=registry_ui --cov-report=html "
        "--cov-report=term-missing --cov-report=xml"
    )
    print("\n✓ Coverage reports generated:")
    print("  - htmlcov/index.html (HTML)")
    print("  - Terminal output above")
    print("  - coverage.xml (XML for CI)")


@task
def debug_logs(ctx):
    """Run tests with debug-level logging."""
    ctx.run("uv run pytest --log-cli-level=DEBUG")


@task
def ci(ctx):
    """Run all tests as if in CI (with XML coverage)."""
    ctx.run("uv run pytest --cov=registry_ui --cov-report=xml")


@task(help={"src": "Path to check (default: registry_ui)"})
def flake8(ctx, src="registry_ui"):
    """Run flake8 style checker."""
    ctx.run(f"uv run flake8 {src}")


@task(help={"check": "Check only, don't modify files"})
def black(ctx, check=False):
    """Format code with black."""
    cmd = "uv run black registry_ui tests main.py tasks.py"
    if check:
        cmd += " --check"
    ctx.run(cmd)


@task
def black_check(ctx):
    """Check if code needs black formatting."""
    ctx.run("uv run black registry_ui tests main.py tasks.py --check")


@task(
    help={
        "config": "Config file (default: config.yml)",
        "dry_run": "Only show the purge plan",
        "repos": "Comma-separated repositories",
    }
)
def purge(ctx, config="config.yml", dry_run=False, repos=""):
    """Run the purge task once."""
    cmd = f"uv run python main.py --config-file {config} --purge-tags"
    if dry_run:
        cmd += " --dry-run"
    if repos:
        cmd += f" --purge-from-repos {repos}"
    ctx.run(cmd)


# Namespace for tests
test_ns = Collection("test")
test_ns.add_task(test, default=True)
test_ns.add_task(unit)
test_ns.add_task(api)
test_ns.add_task(specific)
test_ns.add_task(coverage)
test_ns.add_task(debug_logs)
test_ns.add_task(ci)

# Namespace for linting
lint_ns = Collection("lint")
lint_ns.add_task(flake8)
lint_ns.add_task(black)
lint_ns.add_task(black_check)

# Register namespaces at module level for invoke to discover
ns = Collection(test_ns, lint_ns, purge)
