"""CLI entry point for eyes-playwright."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from playwright.async_api import async_playwright
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from eyes_playwright.driver.driver import Driver
from eyes_playwright.engine.baseline_registry import BaselineRegistryManager
from eyes_playwright.eyes import Eyes
from eyes_playwright.models.config import EyesConfig
from eyes_playwright.models.geometry import RectangleSize
from eyes_playwright.models.session import TestResults

console = Console()

DEFAULT_CONFIG = "eyes-config.json"


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def load_config(path: str) -> EyesConfig:
    """Load the config file, or fall back to defaults when it does not exist."""
    try:
        return EyesConfig.load(path)
    except FileNotFoundError:
        return EyesConfig()


def parse_viewport(value: Optional[str]) -> Optional[RectangleSize]:
    if not value:
        return None
    try:
        width, height = value.lower().split("x")
        return RectangleSize(width=int(width), height=int(height))
    except ValueError:
        raise click.BadParameter(f"Expected WIDTHxHEIGHT, got '{value}'")


async def run_check(
    cfg: EyesConfig,
    url: str,
    app_name: str,
    test_name: str,
    selectors: tuple[str, ...],
    viewport: Optional[RectangleSize],
    headed: bool = False,
) -> Optional[TestResults]:
    """Open a session, check the page and the given selectors, and close it."""
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=not headed)
        try:
            page = await browser.new_page()
            driver = Driver(page, implicit_wait_ms=cfg.implicit_wait_ms)
            eyes = Eyes(config=cfg)
            try:
                await eyes.open(driver, app_name, test_name, viewport)
                await driver.get(url)
                await eyes.check_window(tag="window")
                for selector in selectors:
                    await eyes.check_region_by(selector, tag=selector)
                return await eyes.close(throw_ex=False)
            finally:
                await eyes.abort_if_not_closed()
        finally:
            await browser.close()


def print_results(results: TestResults) -> None:
    table = Table(title=f"{results.test_name} ({results.app_name})")
    table.add_column("Step", style="bold")
    table.add_column("Tag")
    table.add_column("Result")
    for step in results.step_results:
        if step.is_new:
            outcome = "[yellow]new[/yellow]"
        elif step.as_expected:
            outcome = "[green]match[/green]"
        else:
            outcome = "[red]mismatch[/red]"
        table.add_row(str(step.index), step.tag or "", outcome)
    console.print(table)

    status = "[bold green]PASSED[/bold green]" if results.is_passed else "[bold red]FAILED[/bold red]"
    console.print(
        f"{status}: {results.matches} matches, {results.mismatches} mismatches, "
        f"{results.missing} missing"
    )
    if results.url:
        console.print(f"  Mismatching captures: [blue]{results.url}[/blue]")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Visual checkpoints for Playwright pages"""
    setup_logging(verbose)


@cli.command()
@click.argument("url")
@click.option("--test", "-t", "test_name", required=True, help="Test name")
@click.option("--app", "-a", "app_name", default=None, help="Application name")
@click.option("--selector", "-s", "selectors", multiple=True, help="Element to check (repeatable)")
@click.option("--full-page", is_flag=True, help="Capture the full page")
@click.option("--viewport", default=None, help="Viewport size as WIDTHxHEIGHT")
@click.option("--headed", is_flag=True, help="Show the browser window")
@click.option("--output", "-o", default=None, help="Write the results as JSON")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def check(
    url: str,
    test_name: str,
    app_name: Optional[str],
    selectors: tuple[str, ...],
    full_page: bool,
    viewport: Optional[str],
    headed: bool,
    output: Optional[str],
    config: str,
) -> None:
    """Check URL against its baselines."""
    cfg = load_config(config)
    if full_page:
        cfg.force_full_page = True
    app_name = app_name or cfg.app_name or "default"

    results = asyncio.run(run_check(
        cfg, url, app_name, test_name, selectors, parse_viewport(viewport), headed=headed,
    ))
    if results is None:
        console.print("[yellow]Eyes is disabled; nothing was checked[/yellow]")
        return

    print_results(results)
    if output:
        path = Path(output)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(results.model_dump(mode="json"), f, indent=2)
        console.print(f"  Results: [blue]{path}[/blue]")
    if not results.is_passed:
        sys.exit(1)


@cli.command()
@click.option("--app", "-a", "app_name", prompt="Application name", help="Default application name")
def init(app_name: str) -> None:
    """Create a default configuration file."""
    config_path = Path(DEFAULT_CONFIG)
    if config_path.exists():
        if not click.confirm(f"{DEFAULT_CONFIG} already exists. Overwrite?"):
            return

    cfg = EyesConfig(app_name=app_name)
    cfg.save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\nYou can now check a page:")
    console.print("  [blue]eyes-playwright check https://example.com --test home[/blue]")


@cli.group()
def baselines() -> None:
    """Manage stored baselines."""
    pass


def _registry_manager(cfg: EyesConfig) -> BaselineRegistryManager:
    baselines_dir = Path(cfg.baselines_dir)
    return BaselineRegistryManager(baselines_dir / "registry.json", baselines_dir)


@baselines.command("list")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def baselines_list(config: str) -> None:
    """List stored baselines."""
    registry = _registry_manager(load_config(config)).load()
    if not registry.baselines:
        console.print("[yellow]No baselines stored[/yellow]")
        return
    table = Table(title="Baselines")
    table.add_column("App")
    table.add_column("Test")
    table.add_column("Step")
    table.add_column("Tag")
    table.add_column("Size")
    table.add_column("Captured")
    for entry in sorted(registry.baselines.values(),
                        key=lambda e: (e.app_name, e.test_name, e.step_index)):
        table.add_row(entry.app_name, entry.test_name, str(entry.step_index), entry.tag or "",
                      f"{entry.width}x{entry.height}", entry.captured_at)
    console.print(table)


@baselines.command("reset")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def baselines_reset(config: str, yes: bool) -> None:
    """Delete all stored baselines."""
    if not yes and not click.confirm("Delete all baselines?"):
        return
    removed = _registry_manager(load_config(config)).reset()
    console.print(f"[green]Removed {removed} baselines[/green]")


if __name__ == "__main__":
    cli()
