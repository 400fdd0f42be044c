#!/usr/bin/env python3
"""
Command-line interface for the User Story Quality Assistant.

Provides commands for:
- Parsing a story into role/goal/benefit
- Analysing a story and printing the report
- Listing the registered prompt versions
"""

import sys
import json
from typing import Optional

import click
from dotenv import load_dotenv

from .app import configure_logging
from .models import PipelineStageResult
from .parser import parse_user_story, calculate_completeness
from .prompts import available_versions, get_registry
from .services import StoryWorkflowService
from .utils.errors import APIError
from .utils.repository import InMemoryStoryRepository


@click.group()
def cli():
    """CLI tool for checking user story quality."""
    load_dotenv()
    configure_logging()


@cli.command()
@click.argument('text')
def parse(text: str) -> None:
    """
    Extract role, goal and benefit from a story.

    Works on the classic German and English templates. No engine call is made.
    """
    structured = parse_user_story(text)
    if structured is None:
        click.echo("No user story template detected.")
        click.echo("Completeness: 0")
        return

    click.echo(f"Role:        {structured.role or '-'}")
    click.echo(f"Goal:        {structured.goal or '-'}")
    click.echo(f"Benefit:     {structured.benefit or '-'}")
    if structured.constraints:
        click.echo(f"Constraints: {', '.join(structured.constraints)}")
    click.echo(f"Confidence:  {structured.parse_confidence}")
    for warning in structured.parse_warnings:
        click.echo(f"  ! {warning}")
    click.echo(f"Completeness: {calculate_completeness(structured)}")


def _echo_stage(result: PipelineStageResult) -> None:
    marker = {"completed": "✓", "failed": "✗"}.get(result.status, "-")
    line = f"{marker} {result.stage} ({result.status}, {len(result.finding_ids)} findings)"
    if result.error:
        line += f": {result.error}"
    click.echo(line, err=True)


@cli.command()
@click.argument('text')
@click.option('--mode', type=click.Choice(['pipeline', 'analyze']), default='pipeline',
              help='Full stage pipeline or single-call analysis (default: pipeline)')
@click.option('--format', 'output_format', type=click.Choice(['markdown', 'json']),
              default='markdown', help='Report format (default: markdown)')
@click.option('--context', 'context_file', type=click.File('r', encoding='utf-8'),
              help='File with additional context for the engine')
@click.option('--prompt-version', type=str, help='Prompt registry version')
def analyze(text: str, mode: str, output_format: str, context_file, prompt_version: Optional[str]) -> None:
    """
    Analyse a story and print the quality report.

    Stage progress is written to stderr; the report goes to stdout.
    """
    additional_context = context_file.read() if context_file else None
    service = StoryWorkflowService(repository=InMemoryStoryRepository())

    try:
        story = service.create_story(text)
        story, result = service.analyze_story(
            story.id,
            mode=mode,
            additional_context=additional_context,
            prompt_version=prompt_version,
            on_stage_complete=_echo_stage,
        )
        content, _, _ = service.export(story.id, output_format)
    except APIError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    if result.failed_stages:
        click.echo(f"Warning: {len(result.failed_stages)} stage(s) failed", err=True)
    click.echo(content)


@cli.command()
@click.option('--json', 'as_json', is_flag=True, help='Print as JSON')
def prompts(as_json: bool) -> None:
    """List prompt versions and the operations each one covers."""
    listing = {version: list(get_registry(version)["templates"]) for version in available_versions()}
    if as_json:
        click.echo(json.dumps(listing, indent=2))
        return
    for version, operations in listing.items():
        click.echo(f"{version}: {', '.join(operations)}")


if __name__ == '__main__':
    cli()
