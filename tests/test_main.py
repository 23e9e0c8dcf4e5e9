import datetime
import logging
import os
import string
from collections.abc import AsyncIterator, Generator
from pathlib import Path

import aiohttp
import pytest
from packaging.version import Version

import CLASSIC_Main
import CLASSIC_Paths
from CLASSIC_Config import YAML, ConfigStore, GameVars


class FakeResponse:
    def __init__(self, json_data: object = None, lines: tuple[bytes, ...] = ()) -> None:
        self.json_data = json_data
        self.lines = lines

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None

    async def json(self) -> object:
        return self.json_data

    async def _iter_lines(self) -> AsyncIterator[bytes]:
        for line in self.lines:
            yield line

    @property
    def content(self) -> AsyncIterator[bytes]:
        return self._iter_lines()


class FakeSession:
    """Stands in for `aiohttp.ClientSession`, serving canned responses by URL."""

    def __init__(self, responses: dict[str, FakeResponse]) -> None:
        self.responses = responses

    def get(self, url: str) -> FakeResponse:
        if url not in self.responses:
            raise aiohttp.ClientConnectionError(url)
        return self.responses[url]


@pytest.fixture
def _reset_logger() -> Generator[None]:
    """Detach and close any handlers `configure_logging()` added to the CLASSIC logger."""
    handlers_before = list(CLASSIC_Main.logger.handlers)
    yield
    for handler in CLASSIC_Main.logger.handlers:
        if handler not in handlers_before:
            handler.close()
            CLASSIC_Main.logger.removeHandler(handler)


@pytest.fixture
def fake_versions(monkeypatch: pytest.MonkeyPatch) -> dict[str, Version | None]:
    """Replace both update sources; set the returned dict's values to choose what they report."""
    versions: dict[str, Version | None] = {"github": None, "nexus": None}

    async def fake_github(session: aiohttp.ClientSession) -> Version | None:
        return versions["github"]

    async def fake_nexus(session: aiohttp.ClientSession) -> Version | None:
        return versions["nexus"]

    monkeypatch.setattr(CLASSIC_Main, "get_github_version", fake_github)
    monkeypatch.setattr(CLASSIC_Main, "get_nexus_version", fake_nexus)
    return versions


@pytest.mark.usefixtures("_reset_logger")
def test_configure_logging(tmp_path: Path) -> None:
    """Test that a journal older than 7 days is regenerated and new entries are written to it."""
    log_path = tmp_path / "CLASSIC Journal.log"
    log_path.write_text(string.ascii_letters, encoding="utf-8")
    new_time = (datetime.datetime.now() - datetime.timedelta(days=8)).timestamp()
    os.utime(log_path, (new_time, new_time))

    CLASSIC_Main.configure_logging(log_path)
    file_handlers = [h for h in CLASSIC_Main.logger.handlers if isinstance(h, logging.FileHandler)]
    assert len(file_handlers) == 1, "exactly one file handler should be configured"
    CLASSIC_Main.configure_logging(log_path)
    assert len([h for h in CLASSIC_Main.logger.handlers if isinstance(h, logging.FileHandler)]) == 1, "handler was added twice"

    CLASSIC_Main.logger.info("Logger test")
    file_handlers[0].flush()
    log_text = log_path.read_text(encoding="utf-8")
    assert string.ascii_letters not in log_text, f"{log_path} was not regenerated"
    assert "| INFO | Logger test" in log_text


@pytest.mark.usefixtures("_reset_logger")
def test_configure_logging_keeps_recent_journal(tmp_path: Path) -> None:
    log_path = tmp_path / "CLASSIC Journal.log"
    log_path.write_text("recent entry\n", encoding="utf-8")
    CLASSIC_Main.configure_logging(log_path)
    assert log_path.read_text(encoding="utf-8").startswith("recent entry")


def test_classic_generate_files(config: ConfigStore) -> None:
    """Test that the Ignore and Local stores are generated from their templates and never overwritten."""
    ignore_path = config.path_for(YAML.Ignore)
    local_path = config.path_for(YAML.Game_Local)
    assert not ignore_path.exists(), f"{ignore_path} existed before testing"
    assert not local_path.exists(), f"{local_path} existed before testing"

    CLASSIC_Main.classic_generate_files(config)
    assert ignore_path.is_file(), f"{ignore_path} was not created"
    assert local_path.is_file(), f"{local_path} was not created"
    assert config.get(list[str], YAML.Ignore, "CLASSIC_Ignore_Fallout4") == ["Example Plugin.esp"]

    config.set(YAML.Game_Local, "Game_Info.Root_Folder_Game", "C:/Games/Fallout 4")
    CLASSIC_Main.classic_generate_files(config)
    assert config.get(str, YAML.Game_Local, "Game_Info.Root_Folder_Game") == "C:/Games/Fallout 4", "existing Local.yaml was overwritten"


def test_classic_generate_files_without_template(config: ConfigStore) -> None:
    config.path_for(YAML.Main).write_text("CLASSIC_Info:\n  version: CLASSIC v8.0.0\n", encoding="utf-8")
    CLASSIC_Main.classic_generate_files(config)
    assert not config.path_for(YAML.Ignore).exists()
    assert not config.path_for(YAML.Game_Local).exists()


def test_initialize(classic_folder: Path) -> None:
    """Test that the active game and VR mode come from CLASSIC Settings.yaml."""
    (classic_folder / "CLASSIC Settings.yaml").write_text(
        "CLASSIC_Settings:\n  Managed Game: Skyrim SE\n  VR Mode: true\n", encoding="utf-8"
    )
    config = CLASSIC_Main.initialize(classic_folder)
    assert config.gamevars == {"game": "Skyrim", "vr": "VR"}


def test_initialize_bootstraps_settings(classic_folder: Path, gamevars: GameVars) -> None:
    config = CLASSIC_Main.initialize(classic_folder, gamevars)
    assert (classic_folder / "CLASSIC Settings.yaml").is_file()
    assert config.gamevars == {"game": "Fallout4", "vr": ""}


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("CLASSIC v8.1.2", Version("8.1.2")),
        ("7.30.3", Version("7.30.3")),
        ("CLASSIC vNext", None),
        ("   ", None),
        (None, None),
    ],
)
def test_version_from(text: str | None, expected: Version | None) -> None:
    assert CLASSIC_Main.version_from(text) == expected


@pytest.mark.asyncio
async def test_get_github_version() -> None:
    session = FakeSession({CLASSIC_Main.GITHUB_RELEASE_URL: FakeResponse({"name": "CLASSIC v8.1.2"})})
    assert await CLASSIC_Main.get_github_version(session) == Version("8.1.2")  # type: ignore[arg-type]

    session = FakeSession({CLASSIC_Main.GITHUB_RELEASE_URL: FakeResponse({"message": "Not Found"})})
    assert await CLASSIC_Main.get_github_version(session) is None  # type: ignore[arg-type]
    assert await CLASSIC_Main.get_github_version(FakeSession({})) is None  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_get_nexus_version() -> None:
    page = (
        b"<html>\n",
        b'<meta property="twitter:label1" content="Version" />\n',
        b'<meta property="twitter:data1" content="8.1.0" />\n',
        b'<link rel="stylesheet" href="site.css" />\n',
    )
    session = FakeSession({CLASSIC_Main.NEXUS_MOD_URL: FakeResponse(lines=page)})
    assert await CLASSIC_Main.get_nexus_version(session) == Version("8.1.0")  # type: ignore[arg-type]

    session = FakeSession({CLASSIC_Main.NEXUS_MOD_URL: FakeResponse(lines=(b'<link rel="stylesheet" href="site.css" />\n',))})
    assert await CLASSIC_Main.get_nexus_version(session) is None  # type: ignore[arg-type]
    assert await CLASSIC_Main.get_nexus_version(FakeSession({})) is None  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_is_latest_version(config: ConfigStore, fake_versions: dict[str, Version | None]) -> None:
    """Test the update check against newer, equal and unavailable remote versions."""
    fake_versions["github"] = Version("8.0.0")
    assert await CLASSIC_Main.is_latest_version(config, quiet=True) is True

    fake_versions["nexus"] = Version("8.1.0")
    assert await CLASSIC_Main.is_latest_version(config, quiet=True) is False

    fake_versions["github"] = fake_versions["nexus"] = None
    with pytest.raises(CLASSIC_Main.UpdateCheckError):
        await CLASSIC_Main.is_latest_version(config, quiet=True, gui_request=True)


@pytest.mark.asyncio
async def test_is_latest_version_disabled(config: ConfigStore, fake_versions: dict[str, Version | None]) -> None:
    """Test that a non-GUI check respects the Update Check setting."""
    fake_versions["github"] = Version("8.0.0")
    assert config.settings(bool, "Update Check") is False
    assert await CLASSIC_Main.is_latest_version(config, quiet=True, gui_request=False) is False

    config.set(YAML.Settings, "CLASSIC_Settings.Update Check", True)
    assert await CLASSIC_Main.is_latest_version(config, quiet=True, gui_request=False) is True

    fake_versions["github"] = None
    assert await CLASSIC_Main.is_latest_version(config, quiet=True, gui_request=False) is False, "failures only raise for GUI requests"


@pytest.mark.asyncio
async def test_is_latest_version_source(config: ConfigStore, fake_versions: dict[str, Version | None]) -> None:
    fake_versions["github"] = Version("9.0.0")
    fake_versions["nexus"] = Version("8.0.0")
    config.set(YAML.Settings, "CLASSIC_Settings.Update Source", "Nexus")
    assert await CLASSIC_Main.is_latest_version(config, quiet=True) is True, "GitHub should not be consulted"

    config.set(YAML.Settings, "CLASSIC_Settings.Update Source", "Somewhere")
    assert await CLASSIC_Main.is_latest_version(config, quiet=True) is False


@pytest.mark.asyncio
async def test_update_check_message(config: ConfigStore, fake_versions: dict[str, Version | None]) -> None:
    """Test that every update check outcome is described and none of them raise."""
    assert await CLASSIC_Main.update_check_message(config) == config.get(str, YAML.Main, "CLASSIC_Interface.update_unable_Fallout4")

    fake_versions["github"] = Version("8.0.0")
    assert (await CLASSIC_Main.update_check_message(config)).startswith("✔️")

    fake_versions["github"] = Version("8.0.1")
    assert await CLASSIC_Main.update_check_message(config) == config.get(str, YAML.Main, "CLASSIC_Interface.update_warning_Fallout4")


@pytest.fixture
def _isolated_main(monkeypatch: pytest.MonkeyPatch, classic_folder: Path) -> None:
    """Run `main()` inside `classic_folder` without a journal file or real folder probing."""
    monkeypatch.chdir(classic_folder)
    monkeypatch.setattr(CLASSIC_Main, "configure_logging", lambda *_args: None)
    monkeypatch.setattr(CLASSIC_Paths, "select_docs_probe", lambda *_args: CLASSIC_Paths.ProtonDocsProbe(classic_folder / "no steam"))


@pytest.mark.usefixtures("_isolated_main")
def test_main_headless_unresolved(classic_folder: Path) -> None:
    """Test that a headless first run still writes a report and exits with an error code."""
    report_path = classic_folder / "report.md"
    assert CLASSIC_Main.main(["--headless", "--no_update_check", "--report", str(report_path)]) == 1
    report = report_path.read_text(encoding="utf-8")
    assert "CANNOT PROCEED" in report
    assert (classic_folder / "CLASSIC Ignore.yaml").is_file()


@pytest.mark.usefixtures("_isolated_main")
def test_main_with_stored_paths(classic_folder: Path, game_folder: Path, docs_folder: Path, gamevars: GameVars) -> None:
    """Test a full headless run once the game and documents folders are known."""
    config = ConfigStore(gamevars=gamevars, base_path=classic_folder)
    CLASSIC_Main.classic_generate_files(config)
    resolver = CLASSIC_Paths.PathResolver(config)
    resolver.accept_docs_path(docs_folder)
    resolver.accept_game_path(game_folder)

    report_path = classic_folder / "report.md"
    assert CLASSIC_Main.main(["--headless", "--no_update_check", "--report", str(report_path)]) == 0
    report = report_path.read_text(encoding="utf-8")
    assert "CANNOT PROCEED" not in report
    assert report.index("GAME / EXE VERSION") < report.index("ADDRESS LIBRARY IS MISSING") < report.index("Fallout4.ini FILE IS MISSING")


@pytest.mark.usefixtures("_isolated_main")
def test_main_without_settings_template(classic_folder: Path) -> None:
    main_yaml = classic_folder / "CLASSIC Data/databases/CLASSIC Main.yaml"
    main_yaml.write_text("CLASSIC_Info:\n  version: CLASSIC v8.0.0\n", encoding="utf-8")
    assert CLASSIC_Main.main(["--headless", "--no_update_check"]) == 2
    assert not (classic_folder / "CLASSIC GFS Report.md").exists()
