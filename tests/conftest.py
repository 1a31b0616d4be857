from __future__ import annotations

import importlib
import sys
import types

import pytest


class FakeIcon:
    """Stands in for pystray.Icon: records state instead of drawing."""

    instances: list["FakeIcon"] = []

    def __init__(self, name: str, icon=None, title: str = "", menu=None) -> None:  # noqa: ANN001
        self.name = name
        self.icon = icon
        self.title = title
        self.menu = menu
        self.ran = False
        self.stopped = False
        self.menu_updates = 0
        FakeIcon.instances.append(self)

    def run(self) -> None:
        self.ran = True

    def stop(self) -> None:
        self.stopped = True

    def update_menu(self) -> None:
        self.menu_updates += 1


class FakeMenu:
    SEPARATOR = object()

    def __init__(self, *items) -> None:  # noqa: ANN002
        self.items = items


class FakeMenuItem:
    def __init__(self, text: str, action, enabled: bool = True) -> None:  # noqa: ANN001
        self.text = text
        self.action = action
        self.enabled = enabled


@pytest.fixture
def fake_pystray(monkeypatch):  # noqa: ANN001, ANN201
    """Install a display-free ``pystray`` and re-import the modules using it."""
    module = types.ModuleType("pystray")
    module.Icon = FakeIcon
    module.Menu = FakeMenu
    module.MenuItem = FakeMenuItem
    FakeIcon.instances = []
    monkeypatch.setitem(sys.modules, "pystray", module)
    for name in ("llamawriter.tray", "llamawriter.main"):
        monkeypatch.delitem(sys.modules, name, raising=False)
    return module


@pytest.fixture
def tray_mod(fake_pystray):  # noqa: ANN001, ANN201
    return importlib.import_module("llamawriter.tray")


@pytest.fixture
def main_mod(fake_pystray):  # noqa: ANN001, ANN201
    return importlib.import_module("llamawriter.main")
