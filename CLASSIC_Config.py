import io
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Literal, TypedDict, get_origin

import ruamel.yaml
from ruamel.yaml.comments import CommentedMap

type YAMLLiteral = str | int | float | bool
type YAMLSequence = list[YAMLLiteral]
type YAMLMapping = dict[str, "YAMLValue"]
type YAMLValue = YAMLMapping | YAMLSequence | YAMLLiteral
type GameID = Literal["Fallout4", "Skyrim", "Starfield"]  # Entries must correspond to the game's Main ESM or EXE file name.

logger = logging.getLogger("CLASSIC")


class YAML(Enum):
    Main = auto()
    """CLASSIC Data/databases/CLASSIC Main.yaml"""
    Settings = auto()
    """CLASSIC Settings.yaml"""
    Ignore = auto()
    """CLASSIC Ignore.yaml"""
    Game = auto()
    """CLASSIC Data/databases/CLASSIC Fallout4.yaml"""
    Game_Local = auto()
    """CLASSIC Data/CLASSIC Fallout4 Local.yaml"""


class GameVars(TypedDict):
    game: GameID
    vr: Literal["VR", ""]


def default_gamevars() -> GameVars:
    return {"game": "Fallout4", "vr": ""}


class ConfigError(Exception):
    """Base class for CLASSIC configuration problems."""


class SettingsBootstrapError(ConfigError):
    """CLASSIC Settings.yaml does not exist and cannot be created from its default template."""


class ConfigPathError(ConfigError, TypeError):
    """A dotted key path runs through a value that is not a mapping."""


# Keys that are expected to be empty until CLASSIC or the user fills them in.
SETTINGS_IGNORE_NONE = {
    "SCAN Custom Path",
    "MODS Folder Path",
    "INI Folder Path",
    "Root_Folder_Game",
    "Root_Folder_Docs",
    "Docs_File_XSE",
    "Docs_Folder_XSE",
    "Game_File_AddressLib",
}

_BOOL_STRINGS = {"true": True, "yes": True, "on": True, "1": True, "false": False, "no": False, "off": False, "0": False}

type YamlPathFunc = Callable[[YAML, GameVars], Path]


def classic_yaml_path(base_path: Path | None = None) -> YamlPathFunc:
    """Build the default store -> file mapping, rooted at `base_path` (CLASSIC's own folder)."""
    root = Path() if base_path is None else Path(base_path)

    def resolve(yaml_store: YAML, gamevars: GameVars) -> Path:
        data_path = root / "CLASSIC Data"
        match yaml_store:
            case YAML.Main:
                return data_path / "databases/CLASSIC Main.yaml"
            case YAML.Settings:
                return root / "CLASSIC Settings.yaml"
            case YAML.Ignore:
                return root / "CLASSIC Ignore.yaml"
            case YAML.Game:
                return data_path / f"databases/CLASSIC {gamevars["game"]}.yaml"
            case YAML.Game_Local:
                return data_path / f"CLASSIC {gamevars["game"]} Local.yaml"
            case _:
                raise NotImplementedError(yaml_store)

    return resolve


def coerce_value[T](_type: type[T], value: YAMLValue | None, key_path: str = "") -> T | None:
    """Convert a loaded YAML value to `_type`, or return None when that is not possible.

    Numbers and bools convert to str, numeric / boolean strings convert back.
    Mappings and sequences only satisfy `dict` and `list` requests.
    """
    if value is None:
        return None
    origin = get_origin(_type) or _type
    result: object = None

    if origin is bool:
        if isinstance(value, bool):
            result = value
        elif isinstance(value, str):
            result = _BOOL_STRINGS.get(value.strip().lower())
    elif origin is int:
        if isinstance(value, bool):
            result = None
        elif isinstance(value, int):
            result = int(value)
        elif isinstance(value, float) and value.is_integer():
            result = int(value)
        elif isinstance(value, str):
            try:
                result = int(value.strip())
            except ValueError:
                result = None
    elif origin is float:
        if isinstance(value, bool):
            result = None
        elif isinstance(value, (int, float)):
            result = float(value)
        elif isinstance(value, str):
            try:
                result = float(value.strip())
            except ValueError:
                result = None
    elif origin is str:
        if isinstance(value, bool):
            result = "true" if value else "false"
        elif isinstance(value, (str, int, float)):
            result = str(value)
    elif origin is Path:
        if isinstance(value, str) and value.strip():
            result = Path(value.strip())
    elif origin is list:
        if isinstance(value, list):
            result = value
    elif origin is dict:
        if isinstance(value, dict):
            result = value
    elif isinstance(value, origin):
        result = value

    if result is None:
        logger.warning(f"> > > ERROR (coerce_value) : '{key_path}' holds {type(value).__name__}, expected {getattr(_type, "__name__", _type)}")
    return result  # type: ignore[return-value]


@dataclass
class StoreEntry:
    """Cached state of one logical YAML store."""

    yaml_store: YAML
    path: Path | None = None
    data: YAMLMapping = field(default_factory=CommentedMap)
    mod_time: int | None = None
    lock: threading.RLock = field(default_factory=threading.RLock)


class ConfigStore:
    """Caches CLASSIC's YAML stores and serves dotted-path reads and writes against them.

    A cached document stays valid while its file's modification time (in ns) is unchanged.
    The file behind a store is resolved again on every access, since it depends on `gamevars`.
    """

    def __init__(
        self,
        gamevars: GameVars | None = None,
        yaml_path: YamlPathFunc | None = None,
        base_path: Path | None = None,
    ) -> None:
        self.gamevars: GameVars = default_gamevars() if gamevars is None else gamevars
        self.yaml_path = yaml_path or classic_yaml_path(base_path)
        self._entries: dict[YAML, StoreEntry] = {}
        self._entries_lock = threading.Lock()

    @staticmethod
    def _yaml() -> ruamel.yaml.YAML:
        yaml = ruamel.yaml.YAML()
        yaml.indent(offset=2)
        yaml.width = 300
        return yaml

    def _entry(self, yaml_store: YAML) -> StoreEntry:
        with self._entries_lock:
            if yaml_store not in self._entries:
                self._entries[yaml_store] = StoreEntry(yaml_store)
            return self._entries[yaml_store]

    def path_for(self, yaml_store: YAML) -> Path:
        return self.yaml_path(yaml_store, self.gamevars)

    def cached_mod_time(self, yaml_store: YAML) -> int | None:
        """Modification time (ns) recorded the last time `yaml_store` was loaded or written."""
        entry = self._entries.get(yaml_store)
        return entry.mod_time if entry else None

    def info_key(self, key: str) -> str:
        """Key path inside the section for the active game variant, e.g. `GameVR_Info.<key>`."""
        return f"Game{self.gamevars["vr"]}_Info.{key}"

    # ================================================
    # LOAD / WRITE
    # ================================================
    def _read(self, yaml_path: Path) -> YAMLMapping:
        try:
            with yaml_path.open(encoding="utf-8") as yaml_file:
                data = self._yaml().load(yaml_file)
        except ruamel.yaml.YAMLError as err:
            logger.error(f"> > > ERROR (load_yaml) : '{yaml_path}' is not valid YAML and will be treated as empty. {err}")
            return CommentedMap()
        except (OSError, UnicodeDecodeError) as err:
            logger.error(f"> > > ERROR (load_yaml) : Unable to read '{yaml_path}'. {err}")
            return CommentedMap()

        if data is None:
            return CommentedMap()
        if not isinstance(data, dict):
            logger.error(f"> > > ERROR (load_yaml) : '{yaml_path}' does not contain a mapping and will be treated as empty.")
            return CommentedMap()
        return data

    def _document(self, entry: StoreEntry, yaml_path: Path) -> YAMLMapping:
        try:
            mod_time: int | None = yaml_path.stat().st_mtime_ns
        except FileNotFoundError:
            mod_time = None
        except OSError as err:
            logger.error(f"> > > ERROR (load_yaml) : {err}")
            mod_time = None

        if entry.path == yaml_path and entry.mod_time == mod_time:
            return entry.data

        if mod_time is not None:
            logger.debug(f"- - - (RE)LOADING {yaml_path}")
        entry.path = yaml_path
        entry.mod_time = mod_time
        entry.data = self._read(yaml_path) if mod_time is not None else CommentedMap()
        return entry.data

    def _write(self, entry: StoreEntry, yaml_path: Path, data: YAMLMapping) -> None:
        stream = io.StringIO()
        self._yaml().dump(data, stream)
        yaml_path.parent.mkdir(parents=True, exist_ok=True)
        yaml_path.write_text(stream.getvalue(), encoding="utf-8")

        entry.path = yaml_path
        entry.data = data
        entry.mod_time = yaml_path.stat().st_mtime_ns

    def load_yaml(self, yaml_store: YAML) -> YAMLMapping:
        """Return the (cached) document behind `yaml_store`; an empty mapping if its file is missing."""
        entry = self._entry(yaml_store)
        with entry.lock:
            yaml_path = self._prepare(yaml_store)
            return self._document(entry, yaml_path)

    def _prepare(self, yaml_store: YAML) -> Path:
        yaml_path = self.path_for(yaml_store)
        if yaml_store is YAML.Settings and not yaml_path.exists():
            self._bootstrap_settings(yaml_path)
        return yaml_path

    def _bootstrap_settings(self, settings_path: Path) -> None:
        default_settings = self.get(str, YAML.Main, "CLASSIC_Info.default_settings")
        if not default_settings or not default_settings.strip():
            msg = f"Invalid or missing CLASSIC_Info.default_settings in '{self.path_for(YAML.Main)}', unable to create '{settings_path.name}'"
            raise SettingsBootstrapError(msg)

        settings_path.parent.mkdir(parents=True, exist_ok=True)
        settings_path.write_text(default_settings, encoding="utf-8")
        logger.info(f"- - - GENERATED {settings_path.name} FROM DEFAULT TEMPLATE")

    # ================================================
    # DOTTED PATH ACCESS
    # ================================================
    @staticmethod
    def _walk(data: YAMLMapping, keys: list[str], key_path: str) -> YAMLMapping:
        container = data
        for key in keys[:-1]:
            if container.get(key) is None:
                container[key] = CommentedMap()
            next_value = container[key]
            if not isinstance(next_value, dict):
                msg = f"'{key}' in '{key_path}' is a {type(next_value).__name__}, not a mapping"
                raise ConfigPathError(msg)
            container = next_value
        return container

    def _lookup(self, yaml_store: YAML, key_path: str) -> YAMLValue | None:
        entry = self._entry(yaml_store)
        keys = key_path.split(".")
        with entry.lock:
            data = self._document(entry, self._prepare(yaml_store))
            try:
                container = self._walk(data, keys, key_path)
            except ConfigPathError as err:
                logger.error(f"> > > ERROR (yaml_settings) : {err}")
                return None
            return container.get(keys[-1])

    def get[T](self, _type: type[T], yaml_store: YAML, key_path: str) -> T | None:
        """Read `key_path` from `yaml_store` as `_type`. Missing or unconvertible values give None."""
        value = self._lookup(yaml_store, key_path)
        if value is None:
            if key_path.rsplit(".", maxsplit=1)[-1] not in SETTINGS_IGNORE_NONE:
                logger.warning(f"> > > ERROR (yaml_settings) : Trying to grab a None value for : '{key_path}' ({yaml_store.name})")
            return None
        return coerce_value(_type, value, key_path)

    def set[T](self, yaml_store: YAML, key_path: str, new_value: T, *, replace: bool = False) -> T:
        """Write `new_value` at `key_path` and save the whole store file.

        Replacing a mapping with a scalar (or the reverse) needs `replace=True`.
        """
        entry = self._entry(yaml_store)
        keys = key_path.split(".")
        with entry.lock:
            yaml_path = self._prepare(yaml_store)
            data = self._document(entry, yaml_path)
            container = self._walk(data, keys, key_path)

            current = container.get(keys[-1])
            if not replace and current is not None and isinstance(current, dict) != isinstance(new_value, dict):
                msg = f"Refusing to replace {type(current).__name__} at '{key_path}' with {type(new_value).__name__}"
                raise ConfigPathError(msg)

            container[keys[-1]] = new_value
            self._write(entry, yaml_path, data)
        return new_value

    def get_or_create[T](self, _type: type[T], yaml_store: YAML, key_path: str, default_value: T) -> T | None:
        """Return the stored value, saving `default_value` first if nothing is stored yet."""
        entry = self._entry(yaml_store)
        with entry.lock:
            value = self._lookup(yaml_store, key_path)
            if value is None:
                self.set(yaml_store, key_path, default_value)
                return default_value
        return coerce_value(_type, value, key_path)

    def settings[T](self, _type: type[T], setting: str) -> T | None:
        """Read a user setting from the `CLASSIC_Settings` section of CLASSIC Settings.yaml."""
        return self.get(_type, YAML.Settings, f"CLASSIC_Settings.{setting}")
