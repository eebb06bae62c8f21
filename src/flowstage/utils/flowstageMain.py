import os
import sys
import textwrap
import types
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as distribution_version
from typing import Callable

from flowstage.version import version


def main() -> None:
    commands = loadModules()
    args = sys.argv[1:]

    if not args or args[0] in ('-h', '--help'):
        printHelp(commands)
        sys.exit(0)
    if args[0] == '--version':
        printVersion()
        sys.exit(0)

    module = commands.get(args[0])
    if module is None:
        sys.stderr.write(f'No such command "{args[0]}". Run with --help to see the commands there are.\n')
        sys.exit(1)

    # The command parses the rest of the line itself
    del sys.argv[1]
    entry_point(module)()


def entry_point(module: types.ModuleType) -> Callable[[], None]:
    """The main() of a command module, or exit if it has none."""
    func = getattr(module, 'main', None)
    if func is None:
        sys.stderr.write(f'Internal flowstage error: command module {module.__name__} has no main()\n')
        sys.exit(1)
    return func


def loadModules() -> dict[str, types.ModuleType]:
    """Map command names to the modules that implement them. flowstageList becomes "list"."""
    from flowstage.utils import flowstageList, flowstageStage

    return {module.__name__.rsplit('.', 1)[-1][len('flowstage'):].lower(): module
            for module in (flowstageList, flowstageStage)}


def printHelp(commands: dict[str, types.ModuleType]) -> None:
    name = os.path.basename(sys.argv[0])
    width = max(len(cmd) for cmd in commands)
    listing = '\n'.join(f'    {cmd.ljust(width)}  {(module.__doc__ or "").strip()}'
                        for cmd, module in commands.items())
    print(textwrap.dedent(f"""\
        Usage: {name} COMMAND [OPTIONS]
               {name} COMMAND --help
               {name} --version

        Commands:
        """) + listing)


def printVersion() -> None:
    try:
        print(distribution_version('flowstage'))
    except PackageNotFoundError:
        print(version)
