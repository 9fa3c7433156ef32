"""
Parsing and rendering of PKGBUILD recipes.

A recipe is loaded into a :class:`~gemsync.models.Recipe`, changed as a
value and rendered back with :func:`serialize`, which is deterministic so
that unrelated fields stay byte-stable between runs.
"""

from __future__ import annotations

import re
import shlex
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import MalformedRecipe, MalformedVersion
from .models import Recipe, RecipeDiff, Version


GENERATOR_LINE = "# Generated by gemsync"

DEFAULT_EXTRA_LINES = (
    "options=(!emptydirs)",
    "source=(https://rubygems.org/downloads/$_gemname-$pkgver.gem)",
    "noextract=($_gemname-$pkgver.gem)",
)

REQUIRED_KEYS = ("_gemname", "pkgver", "pkgrel", "depends")
_MANAGED_KEYS = {
    "_gemname", "pkgname", "pkgver", "pkgrel", "pkgdesc", "arch", "url", "license", "depends",
}

_TAG_RE = r"^\s*#\s*{tag}\s*:(.*)$"
_ASSIGN_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)=(.*)$", re.DOTALL)
_FUNCTION_RE = re.compile(r"^[A-Za-z_][\w-]*\s*\(\)\s*\{?")
_QUOTED_RE = re.compile(r"'[^']*'|\"(?:\\.|[^\"\\])*\"")
_BARE_RE = re.compile(r"^[A-Za-z0-9_.+:@%/=<>!-]+$")


def _tags(text: str, tag: str) -> Tuple[str, ...]:
    pattern = re.compile(_TAG_RE.format(tag=tag), re.MULTILINE)
    values = (m.strip() for m in pattern.findall(text))
    return tuple(v for v in values if v)


def _logical_lines(lines: Iterable[str]) -> List[str]:
    """Join assignments whose parenthesized value spans several lines."""
    result: List[str] = []
    pending: List[str] = []
    depth = 0
    for line in lines:
        stripped = line.rstrip()
        if not pending and (not stripped.strip() or stripped.lstrip().startswith("#")):
            continue
        unquoted = _QUOTED_RE.sub("", stripped)
        depth += unquoted.count("(") - unquoted.count(")")
        pending.append(stripped)
        if depth <= 0:
            result.append("\n".join(pending))
            pending = []
            depth = 0
    if pending:
        raise MalformedRecipe(f"Unterminated array starting at: {pending[0]!r}")
    return result


def _words(value: str) -> List[str]:
    value = value.strip()
    if value.startswith("(") and value.endswith(")"):
        value = value[1:-1]
    try:
        return shlex.split(value, comments=True)
    except ValueError as e:
        raise MalformedRecipe(f"Cannot parse value {value!r}: {e}") from e


def _scalar(value: str) -> str:
    return " ".join(_words(value))


def _quote(value: str) -> str:
    return "'" + value.replace("'", "'\\''") + "'"


def _array(items: Sequence[str], always_quote: bool = False) -> str:
    rendered = (
        item if not always_quote and _BARE_RE.match(item) else _quote(item)
        for item in items
    )
    return "(" + " ".join(rendered) + ")"


def parse(text: str, prefix: str = "ruby") -> Recipe:
    """Parse PKGBUILD text; raises MalformedRecipe on missing required fields."""
    lines = text.splitlines()
    build_start = next(
        (i for i, line in enumerate(lines) if _FUNCTION_RE.match(line)), len(lines)
    )
    build_function = "\n".join(lines[build_start:]).rstrip()

    fields: Dict[str, str] = {}
    extra_lines: List[str] = []
    checksum_kind: Optional[str] = None
    checksums: Tuple[str, ...] = ()
    for logical in _logical_lines(lines[:build_start]):
        match = _ASSIGN_RE.match(logical.strip())
        if not match:
            extra_lines.append(logical)
            continue
        key, value = match.groups()
        if key in _MANAGED_KEYS:
            fields[key] = value
        elif key.endswith("sums") and checksum_kind is None:
            checksum_kind = key
            checksums = tuple(_words(value))
        else:
            extra_lines.append(logical)

    missing = [key for key in REQUIRED_KEYS if key not in fields]
    if missing:
        raise MalformedRecipe(f"Missing required field(s): {', '.join(missing)}")

    gem_name = _scalar(fields["_gemname"])
    if not gem_name:
        raise MalformedRecipe("Empty _gemname")
    try:
        gem_version = Version.parse(_scalar(fields["pkgver"]))
    except MalformedVersion as e:
        raise MalformedRecipe(f"Invalid pkgver: {e}") from e
    release_text = _scalar(fields["pkgrel"])
    if not release_text.isdigit() or int(release_text) < 1:
        raise MalformedRecipe(f"Invalid pkgrel: {release_text!r}")

    slot = None
    if "pkgname" in fields:
        slot_match = re.match(
            rf"^{re.escape(prefix)}-(?:\$_gemname|\$\{{_gemname\}}|{re.escape(gem_name)})-(.+)$",
            _scalar(fields["pkgname"]),
        )
        if slot_match:
            slot = slot_match.group(1)

    depends = _words(fields["depends"])
    generated_prefix = prefix + "-"
    return Recipe(
        gem_name=gem_name,
        gem_version=gem_version,
        release=int(release_text),
        slot=slot,
        native_dependencies=tuple(d for d in depends if not d.startswith(generated_prefix)),
        generated_dependencies=tuple(d for d in depends if d.startswith(generated_prefix)),
        licenses=tuple(_words(fields.get("license", "()"))),
        maintainers=_tags(text, "Maintainer"),
        contributors=_tags(text, "Contributor"),
        description=_scalar(fields.get("pkgdesc", "''")),
        url=_scalar(fields.get("url", "''")),
        arch=tuple(_words(fields.get("arch", "()"))),
        checksum_kind=checksum_kind or "sha256sums",
        checksums=checksums,
        extra_lines=tuple(extra_lines),
        build_function=build_function,
    )


def serialize(recipe: Recipe, prefix: str = "ruby") -> str:
    """Render a recipe as PKGBUILD text."""
    lines = [GENERATOR_LINE]
    lines.extend(f"# Maintainer: {m}" for m in recipe.maintainers)
    lines.extend(f"# Contributor: {c}" for c in recipe.contributors)
    lines.append("")

    pkgname = f"{prefix}-$_gemname"
    if recipe.slot:
        pkgname += f"-{recipe.slot}"
    lines.extend([
        f"_gemname={recipe.gem_name}",
        f"pkgname={pkgname}",
        f"pkgver={recipe.gem_version}",
        f"pkgrel={recipe.release}",
        f"pkgdesc={_quote(recipe.description)}",
        f"arch={_array(recipe.arch)}",
        f"url={_quote(recipe.url)}",
        f"license={_array(recipe.licenses)}",
        f"depends={_array(recipe.depends)}",
    ])
    lines.extend(recipe.extra_lines)
    lines.append(f"{recipe.checksum_kind}={_array(recipe.checksums, always_quote=True)}")
    if recipe.build_function:
        lines.append("")
        lines.append(recipe.build_function)
    return "\n".join(lines) + "\n"


def diff(old: Recipe, new: Recipe) -> RecipeDiff:
    return RecipeDiff(
        deps_changed=old.depends != new.depends,
        version_changed=old.gem_version != new.gem_version,
    )


def apply_update(
    old: Recipe, version: Version, generated_dependencies: Iterable[str]
) -> Tuple[Recipe, RecipeDiff]:
    """Move a recipe to ``version`` with new generated dependencies.

    A version change resets the release counter to 1; a dependency-only
    change increments it. Checksums are left for the caller to refresh.
    """
    candidate = replace(
        old,
        gem_version=version,
        generated_dependencies=tuple(generated_dependencies),
    )
    changes = diff(old, candidate)
    if changes.version_changed:
        return replace(candidate, release=1), changes
    if changes.deps_changed:
        return replace(candidate, release=old.release + 1), changes
    return old, changes


def render_build_function(license_files: Iterable[str] = ()) -> str:
    """Default ``package()`` installing the gem and its license files."""
    lines = [
        "package() {",
        "  local _gemdir=\"$(ruby -e'puts Gem.default_dir')\"",
        "  gem install --ignore-dependencies --no-user-install "
        "-i \"$pkgdir/$_gemdir\" -n \"$pkgdir/usr/bin\" $_gemname-$pkgver.gem",
        "  rm \"$pkgdir/$_gemdir/cache/$_gemname-$pkgver.gem\"",
    ]
    for name in license_files:
        lines.append(
            f"  install -D -m644 \"$pkgdir/$_gemdir/gems/$_gemname-$pkgver/{name}\" "
            f"\"$pkgdir/usr/share/licenses/$pkgname/{name}\""
        )
    lines.append("}")
    return "\n".join(lines)
