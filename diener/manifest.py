"""Order-preserving access to ``Cargo.toml`` documents.

These helpers wrap :mod:`tomlkit` so the rewriting layers can parse a manifest,
locate its dependency tables, rebuild single inline dependency entries, and
serialise the document again without disturbing formatting, comments, or key
order anywhere outside the entries that were actually changed.

Example
-------
>>> document = parse_manifest('[dependencies]\\nfoo = { path = "../foo" }\\n')
>>> fields = inline_fields(document["dependencies"]["foo"])
>>> document["dependencies"]["foo"] = build_inline_table(
...     upsert_field(fields, "version", "1.0.0")
... )
>>> render_manifest(document)
'[dependencies]\\nfoo = { path = "../foo", version = "1.0.0" }\\n'
"""

from __future__ import annotations

import collections.abc as cabc
import typing as typ
from pathlib import Path

import tomlkit
from tomlkit.container import Container
from tomlkit.exceptions import TOMLKitError
from tomlkit.items import InlineTable, Item, Key, Trivia, Whitespace

from diener.errors import ManifestError

if typ.TYPE_CHECKING:
    from tomlkit.toml_document import TOMLDocument

MANIFEST_NAME: typ.Final[str] = "Cargo.toml"
DEPENDENCIES_MARKER: typ.Final[str] = "dependencies"

Field = tuple["Key | str", typ.Any]

__all__ = [
    "DEPENDENCIES_MARKER",
    "MANIFEST_NAME",
    "Field",
    "build_inline_table",
    "dependency_tables",
    "drop_fields",
    "effective_name",
    "field_names",
    "fields_equal",
    "inline_fields",
    "package_name",
    "parse_manifest",
    "read_manifest",
    "render_manifest",
    "upsert_field",
    "write_manifest",
    "write_manifest_with_newline",
]


def parse_manifest(text: str, *, source: Path | str = "<string>") -> TOMLDocument:
    """Parse ``text`` into a round-trip preserving document.

    Raises
    ------
    ManifestError
        Raised when ``text`` is not valid TOML. The message names ``source``.
    """
    try:
        return tomlkit.parse(text)
    except TOMLKitError as error:
        message = f"failed to parse {source} as toml: {error}"
        raise ManifestError(message) from error


def read_manifest(manifest: Path) -> TOMLDocument:
    """Read and parse ``manifest`` from disk."""
    manifest = Path(manifest)
    try:
        text = manifest.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as error:
        message = f"failed to read {manifest}: {error}"
        raise ManifestError(message) from error
    return parse_manifest(text, source=manifest)


def render_manifest(document: TOMLDocument) -> str:
    """Serialise ``document`` exactly as tomlkit renders it."""
    return tomlkit.dumps(document)


def write_manifest(document: TOMLDocument, manifest: Path) -> None:
    """Serialise ``document`` to ``manifest`` without touching its layout."""
    Path(manifest).write_text(render_manifest(document), encoding="utf-8")


def write_manifest_with_newline(document: TOMLDocument, manifest: Path) -> None:
    """Serialise ``document`` to ``manifest`` and ensure a trailing newline."""
    rendered = render_manifest(document)
    if not rendered.endswith("\n"):
        rendered = f"{rendered}\n"

    Path(manifest).write_text(rendered, encoding="utf-8")


def package_name(document: TOMLDocument) -> str | None:
    """Return ``[package].name`` or ``None`` for virtual manifests."""
    package = document.get("package")
    if not isinstance(package, cabc.Mapping):
        return None
    name = package.get("name")
    return str(name) if isinstance(name, str) else None


def effective_name(name: str, entry: cabc.Mapping[str, typ.Any]) -> str:
    """Return the crate a dependency refers to, honouring ``package`` renames.

    Examples
    --------
    >>> effective_name("codec", {"package": "parity-scale-codec"})
    'parity-scale-codec'
    >>> effective_name("serde", {"version": "1"})
    'serde'
    """
    package = entry.get("package")
    return str(package) if isinstance(package, str) else name


def dependency_tables(
    container: cabc.Mapping[str, typ.Any],
    prefix: tuple[str, ...] = (),
) -> cabc.Iterator[tuple[tuple[str, ...], cabc.MutableMapping[str, typ.Any]]]:
    """Yield every table whose key contains ``dependencies``.

    Non-dependency tables are searched recursively so ``[target.<cfg>.dependencies]``
    and ``[workspace.dependencies]`` are found as well. Dependency tables are not
    descended into: their sub-tables are dependency entries, not containers.
    """
    for key, value in list(container.items()):
        if isinstance(value, InlineTable) or not isinstance(
            value, cabc.MutableMapping
        ):
            continue
        path = (*prefix, key)
        if DEPENDENCIES_MARKER in key:
            yield path, typ.cast("cabc.MutableMapping[str, typ.Any]", value)
        else:
            yield from dependency_tables(value, path)


def _key_name(key: Key | str) -> str:
    return key.key if isinstance(key, Key) else key


def inline_fields(entry: InlineTable) -> list[Field]:
    """Return the ``(key, item)`` pairs of ``entry`` in their written order.

    The original :class:`~tomlkit.items.Key` objects are kept so quoting and
    separators survive a rebuild.
    """
    return [(key, item) for key, item in entry.value.body if key is not None]


def field_names(fields: cabc.Iterable[Field]) -> list[str]:
    """Return the plain key names of ``fields``."""
    return [_key_name(key) for key, _ in fields]


def drop_fields(
    fields: cabc.Iterable[Field], names: cabc.Container[str]
) -> list[Field]:
    """Return ``fields`` without any key listed in ``names``."""
    return [(key, item) for key, item in fields if _key_name(key) not in names]


def upsert_field(
    fields: cabc.Iterable[Field],
    name: str,
    value: object,
    *,
    position: int | None = None,
) -> list[Field]:
    """Replace ``name`` in place or insert it at ``position`` (default: append).

    Examples
    --------
    >>> field_names(upsert_field([("git", "x"), ("branch", "y")], "tag", "z"))
    ['git', 'branch', 'tag']
    >>> upsert_field([("git", "x")], "git", "y")
    [('git', 'y')]
    """
    updated = list(fields)
    for index, (key, _) in enumerate(updated):
        if _key_name(key) == name:
            updated[index] = (key, value)
            return updated
    if position is None:
        updated.append((name, value))
    else:
        updated.insert(position, (name, value))
    return updated


def _as_item(value: object) -> Item:
    return value if isinstance(value, Item) else tomlkit.item(value)


def build_inline_table(fields: cabc.Iterable[Field]) -> InlineTable:
    """Construct an inline table rendered as ``{ key = value, other = value }``.

    The body mirrors what the tomlkit parser produces for that spelling, so a
    rebuilt entry renders identically on every run.

    Examples
    --------
    >>> build_inline_table([("git", "https://example.com/a"), ("tag", "v1")]).as_string()
    '{ git = "https://example.com/a", tag = "v1" }'
    """
    body = Container(True)
    body.add(Whitespace(" "))
    for key, value in fields:
        body.add(key, _as_item(value))
        body.add(Whitespace(" "))
    return InlineTable(body, Trivia())


def fields_equal(entry: InlineTable, fields: cabc.Iterable[Field]) -> bool:
    """Return ``True`` when ``fields`` would render the same keys and values."""

    def _signature(pairs: cabc.Iterable[Field]) -> list[tuple[str, str]]:
        return [(_key_name(key), _as_item(item).as_string()) for key, item in pairs]

    return _signature(inline_fields(entry)) == _signature(fields)
