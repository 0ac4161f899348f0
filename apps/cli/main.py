"""Typer CLI entrypoint for blankfill."""

from __future__ import annotations

import dataclasses
import json
from pathlib import Path
from typing import Annotated, Any, NoReturn

import typer

from apps.cli.io import (
    build_fill_paths,
    build_normalize_paths,
    write_analysis_atomic,
    write_fill_atomic,
)
from core.config.models import FillSettings
from core.config.settings_loader import load_settings
from core.oracles.base import Oracle
from core.oracles.parsing import parse_descriptors, parse_field_values
from core.oracles.registry import create_oracle, default_oracle_name, list_supported_oracles
from core.orchestrator.pipeline import FILL_MODES, analyze_document, fill_document
from core.templates.models import REPRESENTATION_KINDS, RepresentationKind
from core.templates.occurrence_extractor import extract_occurrences
from core.templates.representations import extract_representations
from core.utils.errors import InputError, RepackagingError

app = typer.Typer(help="Placeholder normalization and template fill CLI", rich_markup_mode=None)

EXIT_OK = 0
EXIT_INTERNAL = 1
EXIT_INPUT = 2
EXIT_REPACKAGING = 3


@app.callback()
def cli_callback() -> None:
    """Keep subcommands explicit (`blankfill scan|normalize|fill`)."""


@app.command("scan")
def scan_command(
    document: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)],
    representation: Annotated[str, typer.Option()] = "plain_text",
    settings: Annotated[Path | None, typer.Option(exists=True, dir_okay=False)] = None,
) -> None:
    """Print the slots found in one representation of a document as JSON."""

    try:
        kind = _resolve_representation(representation)
        engine_settings = _load_settings(settings)
        representations = extract_representations(document.read_bytes())
        occurrences = extract_occurrences(
            representations.get(kind),
            kind,
            label_words=engine_settings.label_words,
            context_window=engine_settings.context_window,
        )
    except Exception as exc:  # noqa: BLE001
        _fail(exc)

    typer.echo(
        json.dumps(
            [dataclasses.asdict(item) for item in occurrences],
            ensure_ascii=False,
            indent=2,
        )
    )
    raise typer.Exit(code=EXIT_OK)


@app.command("normalize")
def normalize_command(
    document: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)],
    out_dir: Annotated[Path, typer.Option()] = Path("."),
    descriptors: Annotated[
        Path | None,
        typer.Option(
            exists=True,
            dir_okay=False,
            help="Descriptor JSON; skips oracle detection when given.",
        ),
    ] = None,
    oracle: Annotated[str | None, typer.Option(help="Oracle backend name.")] = None,
    settings: Annotated[Path | None, typer.Option(exists=True, dir_okay=False)] = None,
) -> None:
    """Replace detected placeholders with canonical {{key}} markers."""

    try:
        engine_settings = _load_settings(settings)
        supplied = parse_descriptors(_load_json(descriptors)) if descriptors is not None else None
        backend = _create_oracle(oracle, engine_settings) if supplied is None else None
        result = analyze_document(
            document.read_bytes(),
            detector=backend,
            summarizer=backend,
            settings=engine_settings,
            descriptors=supplied,
        )
        write_analysis_atomic(build_normalize_paths(out_dir), result)
    except Exception as exc:  # noqa: BLE001
        _fail(exc)

    applied = len(result.report.keys)
    skipped = len(result.report.skipped)
    typer.echo(f"INFO: descriptors={len(result.descriptors)} applied={applied} skipped={skipped}")
    typer.echo("INFO: success")
    raise typer.Exit(code=EXIT_OK)


@app.command("fill")
def fill_command(
    document: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)],
    fields: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)],
    out_dir: Annotated[Path, typer.Option()] = Path("."),
    html: Annotated[Path | None, typer.Option(exists=True, dir_okay=False)] = None,
    text: Annotated[Path | None, typer.Option(exists=True, dir_okay=False)] = None,
    mode: Annotated[str, typer.Option()] = "both",
    oracle: Annotated[str | None, typer.Option(help="Oracle backend name.")] = None,
    settings: Annotated[Path | None, typer.Option(exists=True, dir_okay=False)] = None,
) -> None:
    """Fill a normalized document with field values."""

    normalized_mode = mode.lower().strip()
    if normalized_mode not in FILL_MODES:
        typer.echo(f"ERROR: --mode must be one of: {', '.join(sorted(FILL_MODES))}.")
        raise typer.Exit(code=EXIT_INPUT)

    try:
        engine_settings = _load_settings(settings)
        field_values = parse_field_values(_load_json(fields))
        result = fill_document(
            document.read_bytes(),
            field_values,
            mode=normalized_mode,
            styled_markup=html.read_text(encoding="utf-8") if html is not None else None,
            plain_text=text.read_text(encoding="utf-8") if text is not None else None,
            resolver=_create_oracle(oracle, engine_settings),
            settings=engine_settings,
        )
        written = write_fill_atomic(build_fill_paths(out_dir), result)
    except Exception as exc:  # noqa: BLE001
        _fail(exc)

    failed = result.report.slot_mapping.failed_batches
    if failed:
        typer.echo(
            "WARNING(mapping): batches contributed no mappings "
            f"({', '.join(str(item.index) for item in failed)})."
        )
    typer.echo(f"INFO: wrote {', '.join(path.name for path in written)}")
    typer.echo("INFO: success")
    raise typer.Exit(code=EXIT_OK)


def _resolve_representation(name: str) -> RepresentationKind:
    normalized = name.lower().strip()
    for kind in REPRESENTATION_KINDS:
        if kind == normalized:
            return kind
    raise InputError(
        f"--representation must be one of: {', '.join(REPRESENTATION_KINDS)}",
        field="representation",
    )


def _load_settings(path: Path | None) -> FillSettings:
    try:
        return load_settings(path)
    except ValueError as exc:
        raise InputError(str(exc), field="settings") from exc


def _create_oracle(name: str | None, settings: FillSettings) -> Oracle:
    selected = (name or default_oracle_name()).lower().strip()
    try:
        return create_oracle(selected, settings)
    except ValueError as exc:
        raise InputError(
            f"--oracle must be one of: {', '.join(list_supported_oracles())}",
            field="oracle",
        ) from exc


def _load_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InputError(f"{path.name} must be valid UTF-8 JSON", field=path.name) from exc


def _fail(exc: Exception) -> NoReturn:
    if isinstance(exc, InputError):
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=EXIT_INPUT)
    if isinstance(exc, RepackagingError):
        typer.echo(f"ERROR: repackaging failed: {exc}")
        raise typer.Exit(code=EXIT_REPACKAGING)
    typer.echo(f"ERROR: {type(exc).__name__}: {exc}")
    raise typer.Exit(code=EXIT_INTERNAL)


def main() -> None:
    """Console script entrypoint."""

    app()


if __name__ == "__main__":
    main()
