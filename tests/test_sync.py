"""End-to-end tests for the sync engine over a temporary recipe tree."""

from dataclasses import replace

import pytest

from gemsync.config import Settings
from gemsync.models import GemRelease, SyncStatus, Version
from gemsync.recipe import parse
from gemsync.store import RecipeStore
from gemsync.sync import SyncEngine

from conftest import FakeFetcher, FakeIndex, dep, make_probe, write_recipe


def release(name, version, *deps, sha256=None):
    return GemRelease(name, Version.parse(version), tuple(deps), sha256)


def make_engine(root, index, fetcher=None, publisher=None, **settings):
    settings = Settings(root=root, packager=None, **settings)
    return SyncEngine(index, RecipeStore(root), fetcher or FakeFetcher(), settings, publisher)


def read(recipe_dir):
    return parse((recipe_dir / "PKGBUILD").read_text(encoding="utf-8"))


def by_package(report):
    return {outcome.package: outcome for outcome in report.outcomes}


class FakePublisher:
    def __init__(self, result=True):
        self.result = result
        self.calls = []

    def publish(self, recipe_dir, recipe):
        self.calls.append((recipe_dir.name, str(recipe.gem_version), recipe.release))
        return self.result


def test_dependency_change_moves_to_slotted_package(recipe_root):
    foo = write_recipe(recipe_root, "foo", "1.0", release=2, generated=("ruby-bar",))
    index = FakeIndex(
        {"foo": ["1.0"], "bar": ["2.1", "2.1.5", "2.2"]},
        [release("foo", "1.0", dep("bar", "~> 2.1.0"))],
    )
    fetcher = FakeFetcher()

    report = make_engine(recipe_root, index, fetcher).sync_all(
        make_probe(official={"ruby-bar-2.1": "2.1.5"})
    )

    outcome = by_package(report)["ruby-foo"]
    assert outcome.status is SyncStatus.UPDATED
    recipe = read(foo)
    assert recipe.generated_dependencies == ("ruby-bar-2.1",)
    assert recipe.gem_version == Version.parse("1.0")
    assert recipe.release == 3
    assert recipe.checksums == ("sha256-foo-1.0",)
    assert fetcher.calls == []
    assert report.drifts == []


def test_new_upstream_version_resets_release(recipe_root):
    foo = write_recipe(recipe_root, "foo", "1.0", release=3)
    index = FakeIndex(
        {"foo": ["1.0", "1.1"]},
        [release("foo", "1.1", sha256="abc123")],
    )
    fetcher = FakeFetcher()

    report = make_engine(recipe_root, index, fetcher).sync_all(make_probe())

    outcome = by_package(report)["ruby-foo"]
    assert outcome.status is SyncStatus.UPDATED
    assert (outcome.old_version, outcome.new_version, outcome.release) == ("1.0", "1.1", 1)
    recipe = read(foo)
    assert recipe.gem_version == Version.parse("1.1")
    assert recipe.release == 1
    assert recipe.checksums == ("sha256-foo-1.1",)
    assert recipe.maintainers == ("Jane Doe <jane@example.org>",)
    assert fetcher.calls == [("foo", "1.1", "abc123")]


def test_absent_dependency_blocks_recipe(recipe_root):
    foo = write_recipe(recipe_root, "foo", "1.0")
    before = (foo / "PKGBUILD").read_bytes()
    index = FakeIndex(
        {"foo": ["1.0", "1.1"], "bar": ["2.1", "2.1.5", "2.2"]},
        [release("foo", "1.1", dep("bar", "~> 2.1.0"))],
    )
    fetcher = FakeFetcher()

    report = make_engine(recipe_root, index, fetcher).sync_all(make_probe())

    outcome = by_package(report)["ruby-foo"]
    assert outcome.status is SyncStatus.BLOCKED
    assert any("ruby-bar-2.1" in reason for reason in outcome.reasons)
    assert (foo / "PKGBUILD").read_bytes() == before
    assert fetcher.calls == []


def test_second_run_is_idempotent(recipe_root):
    foo = write_recipe(recipe_root, "foo", "1.0", generated=("ruby-bar",))
    index = FakeIndex(
        {"foo": ["1.0", "1.1"], "bar": ["2.2"]},
        [release("foo", "1.1", dep("bar", ">= 2.0"))],
    )
    probe = make_probe(official={"ruby-bar": "2.2"})
    engine = make_engine(recipe_root, index)

    first = engine.sync_all(probe)
    after_first = (foo / "PKGBUILD").read_bytes()
    second = engine.sync_all(probe)

    assert first.updated == 1
    assert second.unchanged == 1 and second.updated == 0
    assert (foo / "PKGBUILD").read_bytes() == after_first


def test_malformed_recipe_fails_without_stopping_the_run(recipe_root):
    broken = recipe_root / "ruby-broken"
    broken.mkdir()
    (broken / "PKGBUILD").write_text("pkgver=1.0\n", encoding="utf-8")
    write_recipe(recipe_root, "foo", "1.0")
    index = FakeIndex({"foo": ["1.0", "1.1"]}, [release("foo", "1.1")])

    report = make_engine(recipe_root, index).sync_all(make_probe())

    outcomes = by_package(report)
    assert outcomes["ruby-broken"].status is SyncStatus.FAILED
    assert outcomes["ruby-foo"].status is SyncStatus.UPDATED
    assert report.failed == 1


def test_recipe_without_upstream_release_is_skipped(recipe_root):
    write_recipe(recipe_root, "ghost", "0.1")
    index = FakeIndex({"foo": ["1.0"]})

    report = make_engine(recipe_root, index).sync_all(make_probe())

    outcome = by_package(report)["ruby-ghost"]
    assert outcome.status is SyncStatus.SKIPPED
    assert outcome.reasons == ["NoUpstreamRelease"]


def test_bundled_gems_are_not_dependencies(recipe_root):
    foo = write_recipe(recipe_root, "foo", "1.0")
    index = FakeIndex(
        {"foo": ["1.0"], "rake": ["13.0"], "bar": ["2.2"]},
        [release("foo", "1.0", dep("rake", ">= 10"), dep("bar"))],
    )
    probe = make_probe(official={"ruby-bar": "2.2"})

    report = make_engine(recipe_root, index).sync_all(probe)

    assert report.updated == 1
    assert read(foo).depends == ("ruby", "ruby-bar")
    assert "ruby-rake" not in probe.official.calls


def test_version_drift_is_advisory(recipe_root):
    foo = write_recipe(recipe_root, "foo", "1.0")
    index = FakeIndex(
        {"foo": ["1.0"], "bar": ["2.1", "2.2"]},
        [release("foo", "1.0", dep("bar"))],
    )

    report = make_engine(recipe_root, index).sync_all(make_probe(official={"ruby-bar": "2.1"}))

    assert report.updated == 1
    assert [(d.distro_name, d.distro_version, d.gem_version) for d in report.drifts] == [
        ("ruby-bar", "2.1", "2.2")
    ]
    assert read(foo).generated_dependencies == ("ruby-bar",)


def test_distro_version_outside_requirement_blocks(recipe_root):
    write_recipe(recipe_root, "foo", "1.0")
    index = FakeIndex(
        {"foo": ["1.0"], "bar": ["2.1", "2.2"]},
        [release("foo", "1.0", dep("bar", ">= 2.2"))],
    )

    report = make_engine(recipe_root, index).sync_all(make_probe(official={"ruby-bar": "2.1"}))

    outcome = by_package(report)["ruby-foo"]
    assert outcome.status is SyncStatus.BLOCKED
    assert "does not satisfy" in outcome.reasons[0]


def test_inconclusive_lookup_blocks(recipe_root):
    write_recipe(recipe_root, "foo", "1.0")
    index = FakeIndex({"foo": ["1.0"], "bar": ["2.2"]}, [release("foo", "1.0", dep("bar"))])
    probe = make_probe()
    probe.official.inconclusive.add("ruby-bar")

    report = make_engine(recipe_root, index).sync_all(probe)

    outcome = by_package(report)["ruby-foo"]
    assert outcome.status is SyncStatus.BLOCKED
    assert "inconclusive" in outcome.reasons[0]
    assert probe.community.calls == []


def test_checksum_mismatch_fails_and_leaves_recipe(recipe_root):
    foo = write_recipe(recipe_root, "foo", "1.0")
    before = (foo / "PKGBUILD").read_bytes()
    index = FakeIndex({"foo": ["1.0", "1.1"]}, [release("foo", "1.1", sha256="abc")])

    report = make_engine(recipe_root, index, FakeFetcher(mismatch=True)).sync_all(make_probe())

    assert by_package(report)["ruby-foo"].status is SyncStatus.FAILED
    assert (foo / "PKGBUILD").read_bytes() == before


def test_slotted_recipe_stays_in_its_family(recipe_root):
    slotted = write_recipe(recipe_root, "bar", "2.1", slot="2.1")
    index = FakeIndex(
        {"bar": ["2.1", "2.1.5", "2.2"]},
        [release("bar", "2.1.5")],
    )

    report = make_engine(recipe_root, index).sync_all(make_probe())

    assert by_package(report)["ruby-bar-2.1"].status is SyncStatus.UPDATED
    recipe = read(slotted)
    assert recipe.gem_version == Version.parse("2.1.5")
    assert recipe.slot == "2.1"


def test_publisher_runs_after_update(recipe_root):
    write_recipe(recipe_root, "foo", "1.0")
    write_recipe(recipe_root, "baz", "0.5")
    index = FakeIndex(
        {"foo": ["1.0", "1.1"], "baz": ["0.5"]},
        [release("foo", "1.1"), release("baz", "0.5")],
    )
    publisher = FakePublisher()

    report = make_engine(recipe_root, index, publisher=publisher).sync_all(make_probe())

    assert publisher.calls == [("ruby-foo", "1.1", 1)]
    outcomes = by_package(report)
    assert outcomes["ruby-foo"].published is True
    assert outcomes["ruby-baz"].published is None


@pytest.mark.parametrize("workers", [1, 4])
def test_parallel_run_matches_serial(tmp_path, workers):
    root = tmp_path / f"recipes-{workers}"
    for name in ("alpha", "beta", "gamma", "delta"):
        write_recipe(root, name, "1.0")
    write_recipe(root, "ghost", "1.0")
    index = FakeIndex(
        {"alpha": ["1.0", "1.1"], "beta": ["1.0"], "gamma": ["1.0", "2.0"], "delta": ["1.0"], "bar": ["3.0"]},
        [
            release("alpha", "1.1", dep("bar")),
            release("beta", "1.0"),
            release("gamma", "2.0", dep("bar", "~> 2.0")),
            release("delta", "1.0", dep("bar")),
        ],
    )
    probe = make_probe(official={"ruby-bar": "3.0"})

    report = make_engine(root, index, workers=workers).sync_all(probe)

    statuses = {package: outcome.status for package, outcome in by_package(report).items()}
    assert statuses == {
        "ruby-alpha": SyncStatus.UPDATED,
        "ruby-beta": SyncStatus.UNCHANGED,
        "ruby-delta": SyncStatus.UPDATED,
        "ruby-gamma": SyncStatus.BLOCKED,
        "ruby-ghost": SyncStatus.SKIPPED,
    }
    assert [o.package for o in report.outcomes] == sorted(statuses)
    assert probe.official.calls.count("ruby-bar") == 1


def test_slot_release_without_patch_level_stays_current(recipe_root):
    slotted = write_recipe(recipe_root, "bar", "2.1", slot="2.1")
    before = (slotted / "PKGBUILD").read_bytes()
    index = FakeIndex({"bar": ["2.1", "2.2"]}, [release("bar", "2.1")])

    report = make_engine(recipe_root, index).sync_all(make_probe())

    outcome = by_package(report)["ruby-bar-2.1"]
    assert outcome.status is SyncStatus.UNCHANGED
    assert outcome.new_version == "2.1"
    assert (slotted / "PKGBUILD").read_bytes() == before


def test_exact_requirement_on_slot_release_resolves(recipe_root):
    foo = write_recipe(recipe_root, "foo", "1.0")
    index = FakeIndex(
        {"foo": ["1.0"], "bar": ["2.1", "2.2"]},
        [release("foo", "1.0", dep("bar", "= 2.1"))],
    )

    report = make_engine(recipe_root, index).sync_all(
        make_probe(official={"ruby-bar-2.1": "2.1"})
    )

    assert by_package(report)["ruby-foo"].status is SyncStatus.UPDATED
    assert read(foo).generated_dependencies == ("ruby-bar-2.1",)
    assert report.drifts == []


def test_non_utf8_recipe_fails_without_stopping_the_run(recipe_root):
    bad = recipe_root / "ruby-bad"
    bad.mkdir()
    (bad / "PKGBUILD").write_bytes(b"_gemname=bad\npkgver=1.0\npkgdesc='\xff\xfe'\n")
    write_recipe(recipe_root, "foo", "1.0")
    index = FakeIndex({"foo": ["1.0", "1.1"], "bad": ["1.0"]}, [release("foo", "1.1")])

    report = make_engine(recipe_root, index).sync_all(make_probe())

    outcomes = by_package(report)
    assert outcomes["ruby-bad"].status is SyncStatus.FAILED
    assert "UTF-8" in outcomes["ruby-bad"].reasons[0]
    assert outcomes["ruby-foo"].status is SyncStatus.UPDATED
    assert report.failed == 1
