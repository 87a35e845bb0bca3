# cli.py - Command line interface for ccbridge
"""
ccbridge CLI - Convert IMS Common Cartridge packages into course work

COMMANDS:
    ccbridge convert PACKAGE [--json OUT] [--show-skips]
        Convert offline and print a per-topic summary

    ccbridge publish PACKAGE [--dry-run] [--json OUT]
        Convert, then create folders, uploads, Docs and quiz Forms in Google Drive

    ccbridge config-template         Print a commented ccbridge.yaml
    ccbridge version                 Show version information

EXAMPLES:
    # See what a package contains
    ccbridge convert course_export.imscc --show-skips

    # Export the converted items for another tool
    ccbridge convert course_export.imscc --json items.json

    # Preview the Drive side without touching it
    ccbridge publish course_export.imscc --dry-run
"""

from __future__ import annotations

import json
import sys
from collections import OrderedDict
from pathlib import Path
from typing import Dict, List, Optional

import click

from ccbridge import __version__
from ccbridge.config_utils import create_config_template, get_access_token, get_config
from ccbridge.errors import CcBridgeError
from ccbridge.google_client import build_services
from ccbridge.icons import icons, work_type_icon
from ccbridge.logging_utils import setup_logging
from ccbridge.manifest import convert_package
from ccbridge.models import ContentItem, SkipEntry
from ccbridge.package import load_package
from ccbridge.publisher import ArtifactPublisher


# ============================================================================
# Context & Output Helpers
# ============================================================================

class CcBridgeContext:
    """Shared context for CLI commands"""

    def __init__(self, verbosity: int = 0, quiet: bool = False):
        self.verbosity = verbosity
        self.quiet = quiet
        self.project_dir = Path.cwd()


MATERIAL_ICONS = {
    "form": icons.QUIZ,
    "link": icons.LINK,
    "drive_file": icons.FILE,
}


def _fail(error: CcBridgeError) -> None:
    click.echo(str(error), err=True)
    sys.exit(1)


def _print_items(items: List[ContentItem]) -> None:
    by_topic: Dict[str, List[ContentItem]] = OrderedDict()
    for item in items:
        by_topic.setdefault(item.topic or "(no topic)", []).append(item)

    for topic, topic_items in by_topic.items():
        click.echo(f"\n{icons.TOPIC} {topic}")
        for item in topic_items:
            extras = []
            if item.attachments:
                extras.append(f"{len(item.attachments)} file(s)")
            if item.assessment_questions:
                extras.append(f"{len(item.assessment_questions)} question(s)")
            links = [m for m in item.materials if m.kind == "link"]
            if links:
                extras.append(f"{len(links)} link(s)")
            suffix = f"  ({', '.join(extras)})" if extras else ""
            click.echo(f"  {work_type_icon(item.work_type.value)} {item.title}{suffix}")
            if item.processing_error:
                click.echo(
                    f"     {icons.ERROR} {item.processing_error.stage}: "
                    f"{item.processing_error.message.strip()}"
                )


def _print_skips(skips: List[SkipEntry]) -> None:
    if not skips:
        return
    click.echo(f"\n{icons.SKIP} Skipped ({len(skips)}):")
    for entry in skips:
        ident = f" [{entry.id}]" if entry.id else ""
        click.echo(f"  - {entry.title}{ident}: {entry.reason}")


def _write_json(path: str, course_name: str, items: List[ContentItem], skips: List[SkipEntry]) -> None:
    data = {
        "course": course_name,
        "items": [item.to_dict() for item in items],
        "skipped": [{"id": s.id, "title": s.title, "reason": s.reason} for s in skips],
    }
    Path(path).write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    click.echo(f"\n{icons.FILE} Wrote {path}")


# ============================================================================
# Click Group Setup
# ============================================================================

@click.group()
@click.option('--verbose', '-v', count=True, help='More output (-vv for debug)')
@click.option('--quiet', '-q', is_flag=True, help='Only show warnings and errors')
@click.pass_context
def cli(ctx, verbose: int, quiet: bool):
    """
    ccbridge - IMS Common Cartridge to Google course work

    Converts LMS course exports into course work items and builds the
    matching Drive folders, Docs and quiz Forms.
    """
    setup_logging(verbosity=verbose + 1, quiet=quiet)
    ctx.obj = CcBridgeContext(verbose, quiet)


# ============================================================================
# Convert
# ============================================================================

@cli.command()
@click.argument('package', type=click.Path(exists=True))
@click.option('--json', 'json_out', type=click.Path(), help='Write converted items to a JSON file')
@click.option('--show-skips', is_flag=True, help='List manifest entries that produced no item')
@click.pass_obj
def convert(ctx: CcBridgeContext, package: str, json_out: Optional[str], show_skips: bool):
    """
    Convert a course package offline

    Examples:
        ccbridge convert course.imscc
        ccbridge convert extracted_course/ --show-skips
    """
    try:
        converter = convert_package(load_package(package))
        items = list(converter)
    except CcBridgeError as e:
        _fail(e)
        return

    click.echo(f"{icons.PACKAGE} {converter.course_name}")
    _print_items(items)
    if show_skips:
        _print_skips(converter.skip_log)

    click.echo(f"\n{icons.SUCCESS} {len(items)} item(s), {len(converter.skip_log)} skipped")
    if json_out:
        _write_json(json_out, converter.course_name, items, converter.skip_log)


# ============================================================================
# Publish
# ============================================================================

@cli.command()
@click.argument('package', type=click.Path(exists=True))
@click.option('--dry-run', '-n', is_flag=True, help='Convert and show the plan without calling Google')
@click.option('--json', 'json_out', type=click.Path(), help='Write published items to a JSON file')
@click.pass_obj
def publish(ctx: CcBridgeContext, package: str, dry_run: bool, json_out: Optional[str]):
    """
    Convert a package and create its Drive artifacts

    Folders are created as <root>/<course>/<topic>/<item>. Re-running is
    safe: existing folders, uploads, Docs and Forms are found and reused.
    """
    try:
        config = get_config(ctx.project_dir)
        converter = convert_package(load_package(package))

        if dry_run:
            items = list(converter)
            click.echo(f"{icons.SEARCH} Dry run - nothing will be created\n")
            click.echo(f"{icons.FOLDER} {config.root_folder_name}/{converter.course_name}")
            _print_items(items)
            _print_skips(converter.skip_log)
            if json_out:
                _write_json(json_out, converter.course_name, items, converter.skip_log)
            return

        services = build_services(get_access_token(config), config)
        publisher = ArtifactPublisher(
            services,
            course_name=converter.course_name,
            root_folder_name=config.root_folder_name,
            max_workers=config.max_workers,
        )
        items = []
        for item in publisher.publish(converter):
            items.append(item)
            icon = icons.ERROR if item.processing_error else icons.SUCCESS
            click.echo(f"{icon} {item.title}")
            for material in item.materials:
                click.echo(f"     {MATERIAL_ICONS.get(material.kind, icons.FILE)} {material.title}: {material.url}")
    except CcBridgeError as e:
        _fail(e)
        return

    failed = [i for i in items if i.processing_error]
    _print_skips(converter.skip_log)
    click.echo(f"\n{icons.SUCCESS} Published {len(items) - len(failed)} of {len(items)} item(s)")
    if failed:
        click.echo(f"{icons.WARNING} {len(failed)} item(s) failed; re-run to retry them")
    if json_out:
        _write_json(json_out, converter.course_name, items, converter.skip_log)


# ============================================================================
# Config & Version
# ============================================================================

@cli.command('config-template')
@click.option('--no-comments', is_flag=True, help='Omit explanatory comments')
def config_template(no_comments: bool):
    """Print a ccbridge.yaml template"""
    click.echo(create_config_template(include_comments=not no_comments))


@cli.command()
def version():
    """Show ccbridge version"""
    click.echo(f"ccbridge v{__version__}")
    click.echo("IMS Common Cartridge to Google Classroom course work")


# ============================================================================
# Entry Point
# ============================================================================

if __name__ == '__main__':
    cli()
