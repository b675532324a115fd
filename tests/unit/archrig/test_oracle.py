"""Idempotency oracle predicates."""

from __future__ import annotations

from pathlib import Path

from archrig.reconcile import Resource, ResourceKind, is_satisfied
from archrig.reconcile.types import (
    CommandSpec,
    FileSpec,
    LineSpec,
    PackageSpec,
    RepositorySpec,
    ServiceSpec,
)


def _line(path: Path, line: str, **kw) -> Resource:
    return Resource(id="line", kind=ResourceKind.LINE_IN_FILE, spec=LineSpec(path=path, line=line, **kw))


def _file(path: Path, content: str, **kw) -> Resource:
    return Resource(id="file", kind=ResourceKind.FILE_CONTENT, spec=FileSpec(path=path, content=content, **kw))


def test_line_already_present_at_line_three_is_satisfied(ctx, tmp_path: Path) -> None:
    config = tmp_path / "pacman.conf"
    lines = [f"line {n}" for n in range(1, 11)]
    lines[2] = "[extra-repo]"
    config.write_text("\n".join(lines) + "\n", encoding="utf-8")

    assert is_satisfied(_line(config, "[extra-repo]"), ctx) is True


def test_line_missing_or_file_absent_is_not_satisfied(ctx, tmp_path: Path) -> None:
    config = tmp_path / "conf"
    assert is_satisfied(_line(config, "x"), ctx) is False
    config.write_text("y\n", encoding="utf-8")
    assert is_satisfied(_line(config, "x"), ctx) is False


def test_line_at_start_requires_first_position(ctx, tmp_path: Path) -> None:
    mirrorlist = tmp_path / "mirrorlist"
    mirrorlist.write_text("Server = a\nServer = preferred\n", encoding="utf-8")
    resource = _line(mirrorlist, "Server = preferred", position="start", match="preferred")
    assert is_satisfied(resource, ctx) is False

    mirrorlist.write_text("Server = preferred\nServer = a\n", encoding="utf-8")
    assert is_satisfied(resource, ctx) is True


def test_line_match_rejects_stale_variants(ctx, tmp_path: Path) -> None:
    rc = tmp_path / "bashrc"
    rc.write_text("export EDITOR=nvim\nexport EDITOR=vim\n", encoding="utf-8")
    resource = _line(rc, "export EDITOR=nvim", match=r"^export EDITOR=")
    assert is_satisfied(resource, ctx) is False


def test_file_replace_compares_content_and_permissions(ctx, tmp_path: Path) -> None:
    target = tmp_path / ".xinitrc"
    target.write_text("exec i3\n", encoding="utf-8")
    target.chmod(0o644)

    assert is_satisfied(_file(target, "exec i3\n"), ctx) is True
    assert is_satisfied(_file(target, "exec i3\n", permissions=0o755), ctx) is False
    target.chmod(0o755)
    assert is_satisfied(_file(target, "exec i3\n", permissions=0o755), ctx) is True
    assert is_satisfied(_file(target, "exec sway\n"), ctx) is False


def test_file_block_mode_ignores_surrounding_content(ctx, tmp_path: Path) -> None:
    rc = tmp_path / ".bashrc"
    spec = FileSpec(path=rc, content="export EDITOR=nvim\n", mode="block")
    rc.write_text(f"alias ll='ls -l'\n\n{spec.begin_marker}\nexport EDITOR=nvim\n{spec.end_marker}\n", encoding="utf-8")
    resource = Resource(id="bashrc", kind=ResourceKind.FILE_CONTENT, spec=spec)

    assert is_satisfied(resource, ctx) is True


def test_file_block_mode_with_malformed_markers_is_unsatisfied(ctx, tmp_path: Path) -> None:
    rc = tmp_path / ".bashrc"
    spec = FileSpec(path=rc, content="x=1\n", mode="block")
    rc.write_text(f"{spec.begin_marker}\nx=1\n", encoding="utf-8")

    assert is_satisfied(Resource(id="rc", kind=ResourceKind.FILE_CONTENT, spec=spec), ctx) is False


def test_repository_needs_uncommented_section(ctx, tmp_path: Path) -> None:
    conf = tmp_path / "pacman.conf"
    conf.write_text("[options]\n#[multilib]\n#Include = /etc/pacman.d/mirrorlist\n", encoding="utf-8")
    resource = Resource(
        id="multilib",
        kind=ResourceKind.REPOSITORY_ENTRY,
        spec=RepositorySpec(name="multilib", config_path=conf, include="/etc/pacman.d/mirrorlist"),
    )
    assert is_satisfied(resource, ctx) is False

    conf.write_text("[options]\n[multilib]\nInclude = /etc/pacman.d/mirrorlist\n", encoding="utf-8")
    assert is_satisfied(resource, ctx) is True


def test_packages_and_services_query_the_system(ctx, fake_system) -> None:
    packages = Resource(id="p", kind=ResourceKind.INSTALLED_PACKAGE, spec=PackageSpec(names=("git", "tmux")))
    service = Resource(id="s", kind=ResourceKind.ENABLED_SERVICE, spec=ServiceSpec(unit="iwd.service"))

    fake_system.installed.add("git")
    assert is_satisfied(packages, ctx) is False
    fake_system.installed.add("tmux")
    assert is_satisfied(packages, ctx) is True

    assert is_satisfied(service, ctx) is False
    fake_system.enabled.add("iwd.service")
    assert is_satisfied(service, ctx) is True


def test_oracle_never_mutates(ctx, fake_system, tmp_path: Path) -> None:
    is_satisfied(_file(tmp_path / "absent", "x\n"), ctx)
    is_satisfied(Resource(id="p", kind=ResourceKind.INSTALLED_PACKAGE, spec=PackageSpec(names=("git",))), ctx)

    assert not (tmp_path / "absent").exists()
    assert fake_system.commands("pacman") == [["pacman", "-Q", "--", "git"]]


def test_command_creates_and_unless(ctx, fake_system, tmp_path: Path) -> None:
    marker = tmp_path / "done"
    creates = Resource(
        id="c",
        kind=ResourceKind.COMMAND,
        spec=CommandSpec(argv=("touch", str(marker)), creates=marker),
    )
    assert is_satisfied(creates, ctx) is False
    marker.touch()
    assert is_satisfied(creates, ctx) is True

    unless = Resource(
        id="u",
        kind=ResourceKind.COMMAND,
        spec=CommandSpec(argv=("usermod", "-aG", "docker", "tester"), unless=("in-group", "docker")),
    )
    fake_system.exit_codes[("in-group", "docker")] = 1
    assert is_satisfied(unless, ctx) is False
    fake_system.exit_codes[("in-group", "docker")] = 0
    assert is_satisfied(unless, ctx) is True
