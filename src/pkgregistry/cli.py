from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import NoReturn

import typer

from pkgregistry.html import render_simple_page
from pkgregistry_core import (
    ErrorKind,
    IndexProjector,
    NotFoundError,
    PackageRegistry,
    RegistryConfig,
    RegistryError,
    load_config,
)
from pkgregistry_core.storage import SqliteCatalog

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

EXIT_CODES = {
    ErrorKind.USAGE: 2,
    ErrorKind.CONFLICT: 3,
    ErrorKind.NOT_FOUND: 4,
    ErrorKind.IO_FAILURE: 5,
    ErrorKind.INCONSISTENT: 6,
    ErrorKind.PARTIAL_DELETE: 6,
}

app = typer.Typer(help="pkgregistry CLI")

ConfigOption = typer.Option(
    None,
    "--config",
    help="Config file path (JSON or YAML).",
    exists=True,
    dir_okay=False,
    readable=True,
)
CatalogOption = typer.Option(
    None,
    "--catalog",
    help="SQLite catalog file path. Overrides config and PKGREGISTRY_CATALOG_PATH.",
)
ArtifactRootOption = typer.Option(
    None,
    "--artifact-root",
    help="Artifact root directory. Overrides config and PKGREGISTRY_ARTIFACT_ROOT.",
)


@app.command()
def init(
    config_path: Path | None = ConfigOption,
    catalog: Path | None = CatalogOption,
    artifact_root: Path | None = ArtifactRootOption,
    create_root: bool = typer.Option(
        False,
        "--create-root",
        help="Create the artifact root directory if it is missing.",
    ),
) -> None:
    """Create the catalog schema and check the artifact root."""
    config = _resolve_config(config_path, catalog, artifact_root)
    if create_root:
        config.artifact_path.mkdir(parents=True, exist_ok=True)
    _open_registry(config)
    typer.echo(f"catalog={config.catalog_path} artifact_root={config.artifact_path} ok")


@app.command()
def publish(
    package_file: Path = typer.Argument(
        ...,
        help="Package file to upload.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    name: str = typer.Option(..., "--name", help="Package name."),
    version: str = typer.Option(..., "--version", help="Package version."),
    filename: str | None = typer.Option(
        None,
        "--filename",
        help="Stored file name. Defaults to the uploaded file's name.",
    ),
    config_path: Path | None = ConfigOption,
    catalog: Path | None = CatalogOption,
    artifact_root: Path | None = ArtifactRootOption,
) -> None:
    """Publish a new package version."""
    registry = _open_registry(_resolve_config(config_path, catalog, artifact_root))
    try:
        meta = registry.new_meta(name, version, filename or package_file.name)
        package = registry.publish(meta, package_file.read_bytes())
    except (RegistryError, ValueError) as exc:
        _fail(exc)
    typer.echo(f"published {package.meta.name}=={package.meta.version} bytes={package.size}")


@app.command()
def replace(
    package_file: Path = typer.Argument(
        ...,
        help="Package file with the new content.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    name: str = typer.Option(..., "--name", help="Package name."),
    version: str = typer.Option(..., "--version", help="Package version."),
    filename: str | None = typer.Option(
        None,
        "--filename",
        help="Stored file name. Defaults to the uploaded file's name.",
    ),
    config_path: Path | None = ConfigOption,
    catalog: Path | None = CatalogOption,
    artifact_root: Path | None = ArtifactRootOption,
) -> None:
    """Replace the content of an existing package version."""
    registry = _open_registry(_resolve_config(config_path, catalog, artifact_root))
    try:
        meta = registry.new_meta(name, version, filename or package_file.name)
        package = registry.replace(meta, package_file.read_bytes())
    except (RegistryError, ValueError) as exc:
        _fail(exc)
    typer.echo(f"replaced {package.meta.name}=={package.meta.version} bytes={package.size}")


@app.command()
def delete(
    name: str = typer.Option(..., "--name", help="Package name."),
    version: str = typer.Option(..., "--version", help="Package version."),
    config_path: Path | None = ConfigOption,
    catalog: Path | None = CatalogOption,
    artifact_root: Path | None = ArtifactRootOption,
) -> None:
    """Delete a package version and its artifact."""
    registry = _open_registry(_resolve_config(config_path, catalog, artifact_root))
    try:
        meta = registry.catalog.get(name, version)
        if meta is None:
            raise NotFoundError(f"package {name}=={version} does not exist")
        registry.delete(meta)
    except RegistryError as exc:
        _fail(exc)
    typer.echo(f"deleted {meta.name}=={meta.version}")


@app.command()
def download(
    name: str = typer.Option(..., "--name", help="Package name."),
    version: str = typer.Option(..., "--version", help="Package version."),
    output: Path = typer.Option(
        ...,
        "--output",
        "-o",
        help="Destination file path.",
        dir_okay=False,
    ),
    config_path: Path | None = ConfigOption,
    catalog: Path | None = CatalogOption,
    artifact_root: Path | None = ArtifactRootOption,
) -> None:
    """Write a stored package to a local file."""
    registry = _open_registry(_resolve_config(config_path, catalog, artifact_root))
    try:
        meta = registry.catalog.get(name, version)
        package = None if meta is None else registry.get(meta)
        if package is None:
            raise NotFoundError(f"package {name}=={version} does not exist")
    except RegistryError as exc:
        _fail(exc)

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(package.data)
    typer.echo(f"downloaded {package.meta.name}=={package.meta.version} output={output}")


@app.command("list")
def list_packages(
    name: str | None = typer.Option(None, "--name", help="Only list versions of this package."),
    config_path: Path | None = ConfigOption,
    catalog: Path | None = CatalogOption,
    artifact_root: Path | None = ArtifactRootOption,
) -> None:
    """List catalogued package versions."""
    registry = _open_registry(_resolve_config(config_path, catalog, artifact_root))
    try:
        metas = registry.packages() if name is None else registry.versions(name)
    except RegistryError as exc:
        _fail(exc)

    rows = [(meta.name, meta.version, meta.location) for meta in metas]
    typer.echo(_render_table(("name", "version", "location"), rows))
    typer.echo(f"total={len(rows)}")


@app.command()
def index(
    name: str | None = typer.Argument(None, help="Render the page of one package."),
    as_html: bool = typer.Option(False, "--html", help="Render a PEP 503 HTML page."),
    base_url: str = typer.Option("", "--base-url", help="Prefix for generated links."),
    config_path: Path | None = ConfigOption,
    catalog: Path | None = CatalogOption,
    artifact_root: Path | None = ArtifactRootOption,
) -> None:
    """Render the simple index (root, or one package's files)."""
    registry = _open_registry(_resolve_config(config_path, catalog, artifact_root))
    projector = IndexProjector(base_url=base_url)
    try:
        if name is None:
            title = "Simple index"
            entries = list(projector.render_root(registry.packages()))
        else:
            title = f"Links for {name}"
            entries = list(projector.render_package(registry.versions(name)))
    except RegistryError as exc:
        _fail(exc)

    if name is not None and not entries:
        _fail(NotFoundError(f"package {name} does not exist"))

    if as_html:
        typer.echo(render_simple_page(title, entries), nl=False)
        return
    for entry in entries:
        typer.echo(f"{entry.display_name} {entry.link}")


@app.command()
def reset(
    yes: bool = typer.Option(False, "--yes", help="Confirm dropping the catalog schema."),
    config_path: Path | None = ConfigOption,
    catalog: Path | None = CatalogOption,
    artifact_root: Path | None = ArtifactRootOption,
) -> None:
    """Drop the catalog table and index. Artifacts are left on disk."""
    if not yes:
        typer.echo("refusing to drop the catalog without --yes", err=True)
        raise typer.Exit(code=1)

    config = _resolve_config(config_path, catalog, artifact_root)
    try:
        SqliteCatalog(config.catalog_path).drop_schema()
    except RegistryError as exc:
        _fail(exc)
    typer.echo(f"catalog reset path={config.catalog_path}")


def _resolve_config(
    config_path: Path | None,
    catalog: Path | None,
    artifact_root: Path | None,
) -> RegistryConfig:
    try:
        base = load_config(config_path) if config_path is not None else RegistryConfig.from_env()
        return RegistryConfig(
            catalog_location=str(catalog) if catalog is not None else base.catalog_location,
            artifact_root=str(artifact_root) if artifact_root is not None else base.artifact_root,
        )
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=EXIT_CODES[ErrorKind.USAGE]) from exc


def _open_registry(config: RegistryConfig) -> PackageRegistry:
    try:
        return PackageRegistry.from_config(config)
    except RegistryError as exc:
        _fail(exc)


def _fail(exc: Exception) -> NoReturn:
    typer.echo(str(exc), err=True)
    if isinstance(exc, RegistryError):
        logging.error("pkgregistry command failed kind=%s error=%s", exc.kind, exc.message)
        raise typer.Exit(code=EXIT_CODES[exc.kind]) from exc
    if isinstance(exc, ValueError):
        raise typer.Exit(code=EXIT_CODES[ErrorKind.USAGE]) from exc
    raise typer.Exit(code=1) from exc


def _render_table(headers: tuple[str, ...], rows: Sequence[tuple[str, ...]]) -> str:
    if not rows:
        return "no packages found"

    widths = [
        max(len(headers[column]), *(len(row[column]) for row in rows))
        for column in range(len(headers))
    ]

    def _line(values: tuple[str, ...]) -> str:
        return " | ".join(value.ljust(widths[index]) for index, value in enumerate(values))

    divider = "-+-".join("-" * width for width in widths)
    body = [_line(headers), divider]
    body.extend(_line(row) for row in rows)
    return "\n".join(body)


def main() -> None:
    """CLI entrypoint."""
    app()


if __name__ == "__main__":
    main()
