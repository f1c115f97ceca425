#!/usr/bin/env python3
"""appalias - create macOS application bundles that alias other apps.

An alias app is a tiny AppleScript applet which, when opened, asks the
Finder to open a native alias embedded inside its own bundle. The alias
points back at the original application, and the applet carries a copy
of the original's icon, so it looks and behaves like the real thing.

The heavy lifting is delegated to the macOS tools:

- osacompile: compiles the launcher script into an .app bundle
- osascript: drives the Finder to create and resolve aliases
- PlistBuddy: reads the icon name from the source Info.plist

Usage (CLI):
    # Create an alias app
    appalias /Applications/Safari.app ~/Desktop/Browser.app

    # Print the application an alias app points to
    appalias --target ~/Desktop/Browser.app

Usage (API):
    from appalias import AliasApp, make_alias_app, resolve_alias_app

    make_alias_app("/Applications/Safari.app", "Browser.app")
    print(resolve_alias_app("Browser.app"))
"""

import argparse
import datetime
import logging
import os
import shutil
import subprocess
import sys
import tempfile
import tomllib
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

# ----------------------------------------------------------------------------
# Constants

__version__ = "0.1.0"

# Type aliases
Pathlike = Path | str

# Required bundle extension for both source and target
BUNDLE_EXT = ".app"

# Icon file extension appended to CFBundleIconFile when missing
ICON_EXT = ".icns"

# Layout of the generated bundle
RESOURCES_SUBPATH = Path("Contents") / "Resources"
ALIAS_DIR_SUBPATH = RESOURCES_SUBPATH / "Alias"
ALIAS_NAME = "AppAlias"
ALIAS_SUBPATH = ALIAS_DIR_SUBPATH / ALIAS_NAME
APPLET_ICON_SUBPATH = RESOURCES_SUBPATH / "applet.icns"
INFO_PLIST_SUBPATH = Path("Contents") / "Info.plist"

# Info.plist key naming the bundle icon
ICON_PLIST_KEY = "CFBundleIconFile"

# Default tool locations
DEFAULT_TOOLS = {
    "osacompile": "/usr/bin/osacompile",
    "osascript": "/usr/bin/osascript",
    "plistbuddy": "/usr/libexec/PlistBuddy",
}

# Environment variable prefix for tool overrides (e.g. APPALIAS_OSASCRIPT)
ENV_TOOL_PREFIX = "APPALIAS_"

# Fixed user-facing messages
FORMAT_ERROR = f"Error: both applications must end in '{BUNDLE_EXT}'"
EXISTS_ERROR = "Error: the target application already exists"
SOURCE_MISSING_ERROR = "Error: the source application does not exist"
TARGET_ERROR = "Error: could not resolve the original application"

# Launcher compiled into the alias app. `path to me` yields the bundle path
# with a trailing slash.
LAUNCHER_SCRIPT = f"""\
set bundlePath to POSIX path of (path to me)
set aliasFile to (POSIX file (bundlePath & "{ALIAS_SUBPATH.as_posix()}")) as alias
tell application "Finder" to open aliasFile
"""

# argv: alias directory, original item
MAKE_ALIAS_SCRIPT = """\
on run argv
    set aliasFolder to (POSIX file (item 1 of argv)) as alias
    set originalItem to (POSIX file (item 2 of argv)) as alias
    tell application "Finder"
        make new alias file at aliasFolder to originalItem
    end tell
end run
"""

# argv: embedded alias path. Prints nothing unless the item is an alias.
RESOLVE_ALIAS_SCRIPT = """\
on run argv
    set aliasItem to (POSIX file (item 1 of argv)) as text
    tell application "Finder"
        set theItem to item aliasItem
        if class of theItem is alias file then
            return POSIX path of ((original item of theItem) as alias)
        end if
    end tell
    return ""
end run
"""

# ----------------------------------------------------------------------------
# Environment and configuration


def _load_dotenv() -> None:
    """Load a .env file from the working directory, if present."""
    load_dotenv(find_dotenv(usecwd=True))


_load_dotenv()


def load_config(config_path: Path | None = None) -> dict[str, object]:
    """Load configuration from a TOML file.

    Searches for configuration in the following order:
    1. Explicit config_path if provided
    2. .appalias.toml in current directory
    3. appalias.toml in current directory

    Args:
        config_path: Optional explicit path to config file

    Returns:
        Configuration dictionary (empty if no config found)

    Raises:
        ConfigurationError: If a config file exists but cannot be parsed

    Example .appalias.toml:
        [tools]
        osascript = "/usr/bin/osascript"
        plistbuddy = "/usr/libexec/PlistBuddy"
    """
    if config_path and config_path.exists():
        paths_to_try = [config_path]
    else:
        cwd = Path.cwd()
        paths_to_try = [
            cwd / ".appalias.toml",
            cwd / "appalias.toml",
        ]

    for path in paths_to_try:
        if path.exists():
            try:
                with open(path, "rb") as f:
                    data: dict[str, object] = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ConfigurationError(
                    f"Cannot read config file {path}: {e}"
                ) from e
            return data

    return {}


def get_config_value(
    config: dict[str, object],
    section: str,
    key: str,
    default: str | None = None,
) -> str | None:
    """Get a string value from config with section.key lookup."""
    section_config = config.get(section, {})
    if not isinstance(section_config, dict):
        return default
    value = section_config.get(key, default)
    if value is None or isinstance(value, str):
        return value
    return default


# Global config (loaded lazily)
_config: dict[str, object] | None = None


def get_config() -> dict[str, object]:
    """Get the global configuration, loading it if necessary."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def get_tool(name: str, config: dict[str, object] | None = None) -> str:
    """Return the path of an external tool.

    The APPALIAS_<NAME> environment variable wins over the [tools]
    section of the config file, which wins over the built-in default.

    Args:
        name: Tool key, one of DEFAULT_TOOLS
        config: Configuration dictionary (default: global config)
    """
    env_value = os.environ.get(ENV_TOOL_PREFIX + name.upper())
    if not is_blank(env_value):
        return env_value
    if config is None:
        config = get_config()
    return (
        get_config_value(config, "tools", name, DEFAULT_TOOLS[name])
        or DEFAULT_TOOLS[name]
    )


# ----------------------------------------------------------------------------
# Error handling


class AliasError(Exception):
    """Base exception class for appalias errors."""


class CommandError(AliasError):
    """Exception raised when a command fails."""

    def __init__(
        self, command: str, returncode: int, output: str | None = None
    ):
        self.command = command
        self.returncode = returncode
        self.output = output
        super().__init__(
            f"Command '{command}' failed with return code {returncode}"
        )


class FileError(AliasError):
    """Exception raised when the bundle layout is not as expected."""


class ConfigurationError(AliasError):
    """Exception raised when configuration is invalid."""


# ----------------------------------------------------------------------------
# Logging configuration


class CustomFormatter(logging.Formatter):
    """Custom logging formatting class with color support."""

    class color:
        """Text colors for terminal output."""

        white = "\x1b[97;20m"
        grey = "\x1b[38;20m"
        green = "\x1b[32;20m"
        yellow = "\x1b[33;20m"
        red = "\x1b[31;20m"
        bold_red = "\x1b[31;1m"
        reset = "\x1b[0m"

    cfmt = (
        f"{color.white}%(delta)s{color.reset} - "
        f"{{}}%(levelname)s{color.reset} - "
        f"{color.white}%(name)s.%(funcName)s{color.reset} - "
        f"{color.grey}%(message)s{color.reset}"
    )

    FORMATS = {
        logging.DEBUG: cfmt.format(color.grey),
        logging.INFO: cfmt.format(color.green),
        logging.WARNING: cfmt.format(color.yellow),
        logging.ERROR: cfmt.format(color.red),
        logging.CRITICAL: cfmt.format(color.bold_red),
    }

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color
        self.fmt = (
            "%(delta)s - %(levelname)s - %(name)s.%(funcName)s - %(message)s"
        )

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with color if enabled."""
        if not self.use_color:
            log_fmt = self.fmt
        else:
            log_fmt = self.FORMATS[record.levelno]
        duration = datetime.datetime.fromtimestamp(
            record.relativeCreated / 1000, datetime.timezone.utc
        )
        record.delta = duration.strftime("%H:%M:%S")
        formatter = logging.Formatter(log_fmt)
        return formatter.format(record)


def setup_logging(debug: bool = False, use_color: bool = True) -> None:
    """Configure logging for the application.

    Args:
        debug: Whether to enable debug logging
        use_color: Whether to use colored output
    """
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(CustomFormatter(use_color))
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=level, handlers=[stream_handler])
    # basicConfig is a no-op once the root logger has handlers
    logging.getLogger().setLevel(level)


# ----------------------------------------------------------------------------
# Utilities


def is_blank(value: str | None) -> bool:
    """True if value is None, empty or only whitespace."""
    return value is None or not value.strip()


def has_bundle_extension(path: Pathlike) -> bool:
    """True if path names an application bundle ('Foo.app' or 'Foo.app/')."""
    return Path(path).suffix == BUNDLE_EXT


def absolute(path: Pathlike) -> Path:
    """Expand '~' and make path absolute without requiring it to exist."""
    return Path(path).expanduser().resolve()


def run_command(
    command: list[str],
    dry_run: bool = False,
    check: bool = True,
    log: logging.Logger | None = None,
) -> str:
    """Run a command and return its output.

    This is the single command execution utility used throughout the
    module. Uses shell=False, so arguments are never reinterpreted.

    Args:
        command: The command as a list of arguments
        dry_run: If True, log command but don't execute (default: False)
        check: If False, return stdout even when the command fails
        log: Optional logger for debug/dry-run output

    Returns:
        The command stdout output

    Raises:
        CommandError: If the command fails and check is True
    """
    cmd_str = " ".join(command)
    if log:
        log.debug("%s", cmd_str)
    if dry_run:
        if log:
            log.info("[DRY RUN] %s", cmd_str)
        return ""
    try:
        result = subprocess.run(
            command, shell=False, check=check, text=True, capture_output=True
        )
    except subprocess.CalledProcessError as e:
        raise CommandError(cmd_str, e.returncode, e.stderr or e.output) from e
    if result.returncode != 0 and log:
        log.debug(
            "%s exited with %d: %s",
            command[0],
            result.returncode,
            (result.stderr or "").strip(),
        )
    return result.stdout


def run_osascript(
    script: str,
    *args: str,
    dry_run: bool = False,
    check: bool = True,
    log: logging.Logger | None = None,
) -> str:
    """Run AppleScript, passing args to its 'on run argv' handler.

    Returns:
        The script's stdout output, stripped of trailing whitespace
    """
    output = run_command(
        [get_tool("osascript"), "-e", script, *args],
        dry_run=dry_run,
        check=check,
        log=log,
    )
    return output.strip()


def query_plist(
    plist: Pathlike,
    key: str,
    dry_run: bool = False,
    log: logging.Logger | None = None,
) -> str | None:
    """Read a top-level string entry from a property list with PlistBuddy.

    Returns:
        The entry's value, or None if the key or the file is missing
    """
    try:
        output = run_command(
            [get_tool("plistbuddy"), "-c", f"Print :{key}", str(plist)],
            dry_run=dry_run,
            log=log,
        )
    except CommandError as e:
        # PlistBuddy exits non-zero for a missing entry or file
        if log:
            log.debug("%s: %s", key, (e.output or "").strip())
        return None
    value = output.strip()
    return None if is_blank(value) else value


# ----------------------------------------------------------------------------
# Alias app


class AliasApp:
    """Creates an application bundle that opens another application.

    Args:
        source: Path to the existing application to alias
        target: Path of the alias app to create (must not exist)
        dry_run: If True, only show what would be done without doing it

    Example:
        app = AliasApp("/Applications/Safari.app", "Browser.app")
        app.create()
    """

    def __init__(
        self,
        source: Pathlike,
        target: Pathlike,
        dry_run: bool = False,
    ):
        self.source = absolute(source)
        self.target = absolute(target)
        self.dry_run = dry_run
        self.log = logging.getLogger(self.__class__.__name__)

        self.alias_dir = self.target / ALIAS_DIR_SUBPATH
        self.alias = self.target / ALIAS_SUBPATH
        self.source_plist = self.source / INFO_PLIST_SUBPATH
        self.source_resources = self.source / RESOURCES_SUBPATH
        self.target_icon = self.target / APPLET_ICON_SUBPATH

    def compile_launcher(self) -> None:
        """Compile the launcher script into a new bundle at target."""
        self.log.info("Compiling launcher into %s", self.target)
        with tempfile.NamedTemporaryFile(
            "w", suffix=".applescript", encoding="utf-8"
        ) as script:
            script.write(LAUNCHER_SCRIPT)
            script.flush()
            run_command(
                [
                    get_tool("osacompile"),
                    "-o",
                    str(self.target),
                    script.name,
                ],
                dry_run=self.dry_run,
                log=self.log,
            )

    def embed_alias(self) -> None:
        """Create a Finder alias to source at Contents/Resources/Alias/AppAlias.

        Raises:
            FileError: If the alias directory already exists or the Finder
                did not produce exactly one alias file
        """
        if self.dry_run:
            self.log.info("[DRY RUN] Would create %s", self.alias_dir)
        else:
            try:
                self.alias_dir.mkdir()
            except FileExistsError as e:
                raise FileError(
                    f"Alias directory already exists: {self.alias_dir}"
                ) from e

        self.log.info("Creating alias to %s", self.source)
        run_osascript(
            MAKE_ALIAS_SCRIPT,
            str(self.alias_dir),
            str(self.source),
            dry_run=self.dry_run,
            log=self.log,
        )

        if self.dry_run:
            self.log.info("[DRY RUN] Would rename alias to %s", self.alias)
            return

        entries = sorted(self.alias_dir.iterdir())
        if len(entries) != 1:
            raise FileError(
                f"Expected one alias in {self.alias_dir}, found {len(entries)}"
            )
        entries[0].rename(self.alias)
        self.log.debug("Renamed %s to %s", entries[0].name, ALIAS_NAME)

    def icon_filename(self) -> str | None:
        """Return the source's icon file name, with .icns appended if missing.

        The PlistBuddy query only reads, so it runs in dry-run mode too.
        """
        name = query_plist(
            self.source_plist,
            ICON_PLIST_KEY,
            log=self.log,
        )
        if is_blank(name):
            return None
        if not name.endswith(ICON_EXT):
            name += ICON_EXT
        return name

    def copy_icon(self) -> None:
        """Replace the applet's default icon with the source's icon.

        Keeps the default icon when the source declares none. A missing
        icon file on either side raises FileNotFoundError.
        """
        name = self.icon_filename()
        if name is None:
            self.log.info("No custom icon declared, keeping default icon")
            return

        source_icon = self.source_resources / name
        if self.dry_run:
            self.log.info(
                "[DRY RUN] Would copy %s to %s", source_icon, self.target_icon
            )
            return
        self.target_icon.unlink()
        shutil.copy2(source_icon, self.target_icon)
        self.log.info("Copied icon: %s", name)

    def create(self) -> Path:
        """Create the complete alias app.

        Returns:
            Path to the created bundle
        """
        self.compile_launcher()
        self.embed_alias()
        self.copy_icon()

        if self.dry_run:
            self.log.info(
                "[DRY RUN] Alias app would be created at: %s", self.target
            )
        else:
            self.log.info("Alias app created successfully: %s", self.target)
        return self.target


# ----------------------------------------------------------------------------
# Functional API


def make_alias_app(
    source: Pathlike,
    target: Pathlike,
    dry_run: bool = False,
) -> Path:
    """Create an alias app at target which opens source.

    This is a convenience function that creates an AliasApp instance
    and calls create() on it.

    Returns:
        Path to the created bundle
    """
    return AliasApp(source, target, dry_run=dry_run).create()


def resolve_alias_app(bundle: Pathlike) -> str | None:
    """Return the POSIX path of the application an alias app opens.

    Returns:
        The original application's path, or None if the embedded alias
        is missing, broken or not an alias
    """
    log = logging.getLogger("resolve_alias_app")
    alias = absolute(bundle) / ALIAS_SUBPATH
    path = run_osascript(RESOLVE_ALIAS_SCRIPT, str(alias), check=False, log=log)
    return None if is_blank(path) else path


# ----------------------------------------------------------------------------
# Command-line interface


def _cmd_target(args: argparse.Namespace) -> None:
    """Handle '--target': print the application an alias app opens."""
    setup_logging(args.verbose, not args.no_color)
    path = resolve_alias_app(args.target)
    print(TARGET_ERROR if path is None else path)


def _cmd_create(args: argparse.Namespace) -> None:
    """Handle '<source> <target>': create an alias app."""
    setup_logging(args.verbose, not args.no_color)
    log = logging.getLogger("appalias")

    if not (
        has_bundle_extension(args.source) and has_bundle_extension(args.dest)
    ):
        print(FORMAT_ERROR)
        return
    if os.path.lexists(Path(args.dest).expanduser()):
        print(EXISTS_ERROR)
        return
    if not absolute(args.source).is_dir():
        print(SOURCE_MISSING_ERROR)
        return

    bundle_path = make_alias_app(args.source, args.dest, dry_run=args.dry_run)
    log.info("Created: %s", bundle_path)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="appalias",
        description="Create a macOS app that opens another app.",
        epilog=(
            "Examples:\n"
            "  appalias /Applications/Safari.app ~/Desktop/Browser.app\n"
            "  appalias --target ~/Desktop/Browser.app\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
    )
    parser.add_argument(
        "source",
        nargs="?",
        help="application to alias (must end in .app)",
    )
    parser.add_argument(
        "dest",
        nargs="?",
        help="alias application to create (must end in .app)",
    )
    parser.add_argument(
        "-t",
        "--target",
        nargs="?",
        const="",
        metavar="ALIAS_APP",
        help="print the application an alias app opens",
    )
    parser.add_argument(
        "-h",
        "--help",
        action="store_true",
        help="show this help message and exit",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="show what would be done without doing it",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="enable verbose/debug logging",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="disable colored output",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Command line interface for appalias."""
    try:
        parser = _build_parser()
        # only the first two positional tokens matter; extras are ignored
        args, _ = parser.parse_known_args(argv)

        if args.help:
            parser.print_help()
        elif args.target is not None:
            if is_blank(args.target):
                parser.print_help()
            else:
                _cmd_target(args)
        elif is_blank(args.source) or is_blank(args.dest):
            parser.print_help()
        else:
            _cmd_create(args)

    except AliasError as e:
        logging.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        sys.exit(130)


if __name__ == "__main__":
    main()
