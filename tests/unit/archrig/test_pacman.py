from __future__ import annotations

from archrig.capabilities.pacman import enable_section, has_section
from archrig.reconcile.types import RepositorySpec

STOCK = """\
[options]
HoldPkg     = pacman glibc
Architecture = auto

[core]
Include = /etc/pacman.d/mirrorlist

#[multilib-testing]
#Include = /etc/pacman.d/mirrorlist

#[multilib]
#Include = /etc/pacman.d/mirrorlist

# An example of a custom package repository.
#[custom]
#SigLevel = Optional TrustAll
#Server = file:///home/custompkgs
"""


def test_has_section_ignores_commented_headers() -> None:
    assert has_section(STOCK, "core") is True
    assert has_section(STOCK, "multilib") is False
    assert has_section(STOCK, "custom") is False


def test_enable_commented_multilib_in_place() -> None:
    spec = RepositorySpec(name="multilib", include="/etc/pacman.d/mirrorlist")

    updated = enable_section(STOCK, spec)

    assert "\n[multilib]\nInclude = /etc/pacman.d/mirrorlist\n" in updated
    assert "#[multilib-testing]\n#Include = /etc/pacman.d/mirrorlist\n" in updated
    assert "# An example of a custom package repository." in updated
    assert updated.count("[multilib]") == 1
    assert has_section(updated, "multilib")


def test_enable_stops_at_comment_prose() -> None:
    text = "#[custom]\n#SigLevel = Optional TrustAll\n#Server = file:///srv\n# trailing note\n"
    updated = enable_section(text, RepositorySpec(name="custom", server="file:///srv"))
    assert updated == "[custom]\nSigLevel = Optional TrustAll\nServer = file:///srv\n# trailing note\n"


def test_append_new_section_with_blank_separator() -> None:
    spec = RepositorySpec(name="chaotic-aur", include="/etc/pacman.d/chaotic-mirrorlist")

    updated = enable_section("[core]\nInclude = /etc/pacman.d/mirrorlist", spec)

    assert updated == (
        "[core]\nInclude = /etc/pacman.d/mirrorlist\n\n[chaotic-aur]\nInclude = /etc/pacman.d/chaotic-mirrorlist\n"
    )


def test_append_keeps_existing_text_verbatim() -> None:
    spec = RepositorySpec(name="chaotic-aur", include="/etc/pacman.d/chaotic-mirrorlist")
    once = enable_section(STOCK, spec)
    assert has_section(once, "chaotic-aur")
    assert once.startswith(STOCK)
