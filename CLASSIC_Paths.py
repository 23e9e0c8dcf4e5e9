import contextlib
import logging
import platform
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Protocol

import regex as re
from PySide6.QtCore import QObject, Signal

from CLASSIC_Config import YAML, ConfigStore
from CLASSIC_LogScan import open_file_with_encoding

with contextlib.suppress(ImportError):
    import winreg

logger = logging.getLogger("CLASSIC")

# Address Library file expected in the XSE plugins folder, per (game, vr).
ADDRESS_LIBRARY_FILES: dict[tuple[str, str], str] = {
    ("Fallout4", ""): "version-1-10-163-0.bin",
    ("Fallout4", "VR"): "version-1-2-72-0.csv",
}

STEAM_ROOT = Path.home() / ".local/share/Steam"


class PathUnresolvedError(Exception):
    """A folder CLASSIC needs could not be found and there is no way to ask the user for it."""


@dataclass
class PathRequest:
    """Everything a prompt channel needs to ask for, check and store one folder path."""

    kind: Literal["docs", "game"]
    prompt: str
    example: str
    is_valid: Callable[[Path], bool]
    invalid_message: str
    accept: Callable[[Path], None]


# ================================================
# PROMPT CHANNELS
# ================================================
class PathPrompt(Protocol):
    def ask(self, request: PathRequest) -> Path | None:
        """Return a valid path, or None if the answer will arrive later (through `request.accept`)."""
        ...


class ConsolePathPrompt:
    """Blocks on `input()` until a valid path is entered."""

    def ask(self, request: PathRequest) -> Path | None:
        print(request.prompt)
        while True:
            input_str = input(f"(EXAMPLE: {request.example} | Press ENTER to confirm.)\n> ").strip()
            input_path = Path(input_str)
            if input_str and request.is_valid(input_path):
                print(f"You entered: '{input_str}' | This path will be automatically added to your CLASSIC Local.yaml")
                return input_path
            print(request.invalid_message.format(path=input_str))


class HeadlessPathPrompt:
    """For batch runs: never waits for input."""

    def ask(self, request: PathRequest) -> Path | None:
        msg = f"Unable to find the {request.kind} folder and no interactive prompt is available. {request.prompt}"
        raise PathUnresolvedError(msg)


class GuiPathPrompt(QObject):
    """Hands path requests to a GUI through `path_requested`; the GUI answers with `submit()`."""

    path_requested = Signal(object)

    def __init__(self) -> None:
        super().__init__()
        self.pending: PathRequest | None = None

    def ask(self, request: PathRequest) -> Path | None:
        self.pending = request
        self.path_requested.emit(request)
        return None

    def submit(self, path: str) -> bool:
        if self.pending is None:
            raise RuntimeError("No folder path was requested")
        request = self.pending
        path = path.strip()
        if path and request.is_valid(Path(path)):
            print(f"You entered: '{path}' | This path will be automatically added to your CLASSIC Local.yaml")
            self.pending = None
            request.accept(Path(path))
            return True
        print(request.invalid_message.format(path=path))
        self.path_requested.emit(request)
        return False


# ================================================
# DOCUMENTS FOLDER PROBES
# ================================================
class DocsProbe(Protocol):
    def probe(self, docs_name: str, steam_id: int | None) -> Path | None: ...


class WindowsDocsProbe:
    """Documents folder from the Windows shell folders registry key."""

    def probe(self, docs_name: str, steam_id: int | None) -> Path | None:
        try:
            with winreg.OpenKey(winreg.HKEY_CURRENT_USER, r"Software\Microsoft\Windows\CurrentVersion\Explorer\Shell Folders") as key:  # pyright: ignore[reportPossiblyUnboundVariable]
                documents_path = Path(winreg.QueryValueEx(key, "Personal")[0])  # pyright: ignore[reportPossiblyUnboundVariable]
        except (OSError, NameError):
            # Fallback to a default path if registry key is not found
            documents_path = Path.home() / "Documents"
        return documents_path / "My Games" / docs_name


class ProtonDocsProbe:
    """Documents folder inside the Proton prefix of the Steam library that holds the game."""

    def __init__(self, steam_root: Path | None = None) -> None:
        self.steam_root = STEAM_ROOT if steam_root is None else steam_root

    def library_descriptors(self) -> list[Path]:
        return [
            self.steam_root / "steamapps/libraryfolders.vdf",
            self.steam_root / "config/libraryfolders.vdf",
            self.steam_root / "steamapps/common/libraryfolders.vdf",
        ]

    @staticmethod
    def find_library(descriptor: Path, steam_id: int) -> Path | None:
        library_path: Path | None = None
        with descriptor.open(encoding="utf-8", errors="ignore") as steam_library:
            for library_line in steam_library:
                values = re.findall(r'"([^"]*)"', library_line)
                if len(values) >= 2 and values[0] == "path":
                    library_path = Path(values[1].replace("\\\\", "\\"))
                elif values and values[0] == str(steam_id) and library_path is not None:
                    return library_path
        return None

    def probe(self, docs_name: str, steam_id: int | None) -> Path | None:
        if steam_id is None:
            return None
        for descriptor in self.library_descriptors():
            if not descriptor.is_file():
                continue
            library_path = self.find_library(descriptor, steam_id)
            if library_path is None:
                continue
            user_path = library_path / "steamapps/compatdata" / str(steam_id) / "pfx/drive_c/users/steamuser"
            candidates = [user_path / docs_folder / "My Games" / docs_name for docs_folder in ("My Documents", "Documents")]
            return next((candidate for candidate in candidates if candidate.is_dir()), candidates[0])
        return None


def select_docs_probe(system: str | None = None) -> DocsProbe:
    system = platform.system() if system is None else system
    if system == "Windows":
        return WindowsDocsProbe()
    return ProtonDocsProbe()


# ================================================
# GAME FOLDER PROBES
# ================================================
def registry_game_path(game: str, vr: str) -> Path | None:
    try:
        with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, rf"SOFTWARE\WOW6432Node\Bethesda Softworks\{game}{vr}") as reg_key:  # pyright: ignore[reportPossiblyUnboundVariable]
            path, _ = winreg.QueryValueEx(reg_key, "installed path")  # pyright: ignore[reportPossiblyUnboundVariable]
    except (OSError, NameError):
        return None
    return Path(path) if path else None


def xse_log_game_path(xse_log: Path, xse_acronym_base: str) -> Path | None:
    """Game folder from the `plugin directory = ...` line the script extender writes to its log."""
    with open_file_with_encoding(xse_log) as log_file:
        for logline in log_file:
            if logline.startswith("plugin directory"):
                _, separator, plugin_dir = logline.partition("=")
                if not separator:
                    continue
                plugin_dir = plugin_dir.strip()
                game_dir = re.sub(rf"[\\/]Data[\\/]{re.escape(xse_acronym_base)}[\\/]Plugins[\\/]?$", "", plugin_dir, flags=re.IGNORECASE)
                return Path(game_dir.replace("\\", "/"))
    return None


# ================================================
# PATH RESOLVER
# ================================================
class PathResolver:
    """Finds the game and documents folders once and remembers them in the Game_Local store."""

    def __init__(
        self,
        config: ConfigStore,
        prompt: PathPrompt | None = None,
        docs_probe: DocsProbe | None = None,
        game_probe: Callable[[str, str], Path | None] = registry_game_path,
    ) -> None:
        self.config = config
        self.prompt: PathPrompt = HeadlessPathPrompt() if prompt is None else prompt
        self.docs_probe = select_docs_probe() if docs_probe is None else docs_probe
        self.game_probe = game_probe
        self.messages: list[str] = []

    @property
    def game(self) -> str:
        return self.config.gamevars["game"]

    @property
    def vr(self) -> str:
        return self.config.gamevars["vr"]

    @property
    def exe_name(self) -> str:
        return f"{self.game}{self.vr}.exe"

    def _game_str(self, key: str) -> str | None:
        return self.config.get(str, YAML.Game, self.config.info_key(key))

    # =========== CHECK DOCUMENTS FOLDER PATH -> GET GAME DOCUMENTS FOLDER ===========
    def find_docs_path(self) -> Path | None:
        logger.debug("- - - INITIATED DOCS PATH CHECK")
        docs_path = self.config.get(Path, YAML.Game_Local, self.config.info_key("Root_Folder_Docs"))
        if docs_path and docs_path.is_dir():
            return docs_path

        docs_name = self._game_str("Main_Docs_Name") or self.game
        steam_id = self.config.get(int, YAML.Game, self.config.info_key("Main_SteamID"))
        probed_path = self.docs_probe.probe(docs_name, steam_id)
        if probed_path and probed_path.is_dir():
            logger.info(f"- - - FOUND DOCUMENTS FOLDER : {probed_path}")
            self.accept_docs_path(probed_path)
            return probed_path

        request = PathRequest(
            kind="docs",
            prompt=f"> > > PLEASE ENTER THE FULL DIRECTORY PATH WHERE YOUR {docs_name}.ini IS LOCATED < < <",
            example=f"C:/Users/Zen/Documents/My Games/{docs_name}",
            is_valid=Path.is_dir,
            invalid_message="'{path}' is not a valid or existing directory path. Please try again.",
            accept=self.accept_docs_path,
        )
        chosen_path = self.prompt.ask(request)
        if chosen_path is not None:
            request.accept(chosen_path)
        return chosen_path

    def accept_docs_path(self, docs_path: Path) -> None:
        self.config.set(YAML.Game_Local, self.config.info_key("Root_Folder_Docs"), str(docs_path))
        self.generate_docs_paths(docs_path)

    def docs_derived_paths(self, docs_path: Path) -> dict[str, Path]:
        xse_acronym = self._game_str("XSE_Acronym")
        xse_acronym_base = self.config.get(str, YAML.Game, "Game_Info.XSE_Acronym") or xse_acronym

        derived = {
            "Docs_File_PapyrusLog": docs_path / "Logs/Script/Papyrus.0.log",
            "Docs_File_WryeBashPC": docs_path / "ModChecker.html",
        }
        if xse_acronym and xse_acronym_base:
            derived["Docs_Folder_XSE"] = docs_path / xse_acronym_base
            derived["Docs_File_XSE"] = docs_path / xse_acronym_base / f"{xse_acronym.lower()}.log"
        return derived

    def generate_docs_paths(self, docs_path: Path) -> None:
        logger.debug("- - - INITIATED DOCS PATH GENERATION")
        for key, path in self.docs_derived_paths(docs_path).items():
            self.config.set(YAML.Game_Local, self.config.info_key(key), str(path))

    def check_docs_folder(self) -> list[str]:
        docs_path = self.config.get(str, YAML.Game_Local, self.config.info_key("Root_Folder_Docs"))
        if docs_path and "onedrive" in docs_path.lower():
            docs_warn = self.config.get(str, YAML.Main, "Warnings_GAME.warn_docs_path")
            return [docs_warn or "❌ CAUTION : MICROSOFT ONEDRIVE IS OVERRIDING YOUR DOCUMENTS FOLDER PATH!\n-----\n"]
        return []

    # =========== CHECK DOCUMENTS XSE FILE -> GET GAME ROOT FOLDER PATH ===========
    def is_game_folder(self, game_path: Path | None) -> bool:
        return bool(game_path) and game_path.is_dir() and game_path.joinpath(self.exe_name).is_file()  # type: ignore[union-attr]

    def find_game_path(self) -> Path | None:
        logger.debug("- - - INITIATED GAME PATH CHECK")
        game_path = self.config.get(Path, YAML.Game_Local, self.config.info_key("Root_Folder_Game"))
        if self.is_game_folder(game_path):
            return game_path

        game_path = self.game_probe(self.game, self.vr)
        if self.is_game_folder(game_path):
            self.accept_game_path(game_path)  # type: ignore[arg-type]
            return game_path

        xse_acronym = self._game_str("XSE_Acronym") or "XSE"
        xse_acronym_base = self.config.get(str, YAML.Game, "Game_Info.XSE_Acronym") or xse_acronym
        xse_file = self.config.get(Path, YAML.Game_Local, self.config.info_key("Docs_File_XSE"))
        if xse_file and xse_file.is_file():
            game_path = xse_log_game_path(xse_file, xse_acronym_base)
            if self.is_game_folder(game_path):
                self.accept_game_path(game_path)  # type: ignore[arg-type]
                return game_path
        else:
            self.messages.append("".join((
                f"❌ CAUTION : THE {xse_acronym.lower()}.log FILE IS MISSING FROM YOUR GAME DOCUMENTS FOLDER! \n",
                f"   You need to run the game at least once with {xse_acronym.lower()}_loader.exe \n",
                "    After that, try running CLASSIC again! \n-----\n",
            )))

        game_name = self._game_str("Main_Root_Name") or self.game
        request = PathRequest(
            kind="game",
            prompt=f"> > PLEASE ENTER THE FULL DIRECTORY PATH WHERE YOUR {game_name} IS LOCATED < <",
            example=rf"C:\Steam\steamapps\common\{game_name}",
            is_valid=self.is_game_folder,
            invalid_message=f"❌ ERROR : NO {self.exe_name} FILE FOUND IN '{{path}}'! Please try again.",
            accept=self.accept_game_path,
        )
        chosen_path = self.prompt.ask(request)
        if chosen_path is not None:
            request.accept(chosen_path)
        return chosen_path

    def accept_game_path(self, game_path: Path) -> None:
        self.config.set(YAML.Game_Local, self.config.info_key("Root_Folder_Game"), str(game_path))
        self.generate_game_paths(game_path)

    def game_derived_paths(self, game_path: Path) -> dict[str, Path]:
        xse_acronym_base = self.config.get(str, YAML.Game, "Game_Info.XSE_Acronym") or self._game_str("XSE_Acronym") or "XSE"
        plugins_path = game_path / "Data" / xse_acronym_base / "Plugins"

        derived = {
            "Game_Folder_Data": game_path / "Data",
            "Game_Folder_Scripts": game_path / "Data/Scripts",
            "Game_Folder_Plugins": plugins_path,
            "Game_File_SteamINI": game_path / "steam_api.ini",
            "Game_File_EXE": game_path / self.exe_name,
        }
        if adlib_file := ADDRESS_LIBRARY_FILES.get((self.game, self.vr)):
            derived["Game_File_AddressLib"] = plugins_path / adlib_file
        return derived

    def generate_game_paths(self, game_path: Path) -> None:
        logger.debug("- - - INITIATED GAME PATH GENERATION")
        for key, path in self.game_derived_paths(game_path).items():
            self.config.set(YAML.Game_Local, self.config.info_key(key), str(path))

    def fill_derived_paths(self, derived: dict[str, Path]) -> None:
        """Store the derived paths that are still empty, e.g. after the user typed only the root folders into Local.yaml."""
        for key, path in derived.items():
            self.config.get_or_create(str, YAML.Game_Local, self.config.info_key(key), str(path))

    # ================================================
    def resolve(self) -> list[str]:
        """Find and store both root folders and any missing derived paths; stored, valid roots are reused as is."""
        self.messages = []
        docs_path = self.find_docs_path()
        if docs_path is not None:
            self.fill_derived_paths(self.docs_derived_paths(docs_path))

        game_path = self.config.get(Path, YAML.Game_Local, self.config.info_key("Root_Folder_Game"))
        if not self.is_game_folder(game_path):
            game_path = self.find_game_path()
        if game_path is not None:
            self.fill_derived_paths(self.game_derived_paths(game_path))
        return list(self.messages)
