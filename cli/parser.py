"""Command parser for CLI input."""

import shlex
from typing import Dict, List, Tuple

from cli.models import (
    CommandRequest,
    DownloadCommand,
    GenerateCommand,
    RootsCommand,
    UploadCommand,
    VerifyCommand,
)
from cli.utils import parse_size
from common.merkle import normalize_root
from common.types import FinalityRequirement, SelectionMode, TrustFilter


class ParseError(Exception):
    """Raised when command parsing fails."""

    pass


UPLOAD_OPTIONS = ("--fragment-size", "--replicas", "--finality", "--trust", "--mode")


def parse_command(input_line: str) -> CommandRequest:
    """Parse user input into a CommandRequest object.

    Args:
        input_line: Raw user input from REPL or argv

    Returns:
        CommandRequest object (one of Generate/Roots/Upload/Download/Verify)

    Raises:
        ParseError: If command syntax is invalid
    """
    if not input_line.strip():
        raise ParseError("Empty command")

    try:
        tokens = shlex.split(input_line)
    except ValueError as e:
        raise ParseError(f"Invalid syntax: {e}")

    return parse_tokens(tokens)


def parse_tokens(tokens: List[str]) -> CommandRequest:
    """Parse an already split command line."""
    if not tokens:
        raise ParseError("Empty command")

    command_name = tokens[0]

    if command_name == "generate":
        return _parse_generate(tokens[1:])
    elif command_name == "roots":
        return _parse_roots(tokens[1:])
    elif command_name == "upload":
        return _parse_upload(tokens[1:])
    elif command_name == "download":
        return _parse_download(tokens[1:])
    elif command_name == "verify":
        return _parse_verify(tokens[1:])
    else:
        raise ParseError(f"Unknown command: {command_name}")


def _split_options(args: List[str], allowed: Tuple[str, ...]) -> Tuple[List[str], Dict[str, str]]:
    """Separate '--name value' options from positional arguments."""
    positional = []
    options: Dict[str, str] = {}
    i = 0
    while i < len(args):
        arg = args[i]
        if arg.startswith("--"):
            name, _, inline_value = arg.partition("=")
            if name not in allowed:
                raise ParseError(f"Unknown option: {name}")
            if inline_value:
                value = inline_value
            elif i + 1 < len(args):
                i += 1
                value = args[i]
            else:
                raise ParseError(f"Option {name} requires a value")
            options[name] = value
        else:
            positional.append(arg)
        i += 1
    return positional, options


def _parse_size_arg(value: str, name: str) -> int:
    try:
        size = parse_size(value)
    except ValueError as e:
        raise ParseError(f"Invalid {name}: {e}")
    if size <= 0:
        raise ParseError(f"{name} must be positive")
    return size


def _parse_choice(value: str, enum_type, name: str) -> str:
    choices = [member.value for member in enum_type]
    if value not in choices:
        raise ParseError(f"Invalid {name} '{value}', expected one of: {', '.join(choices)}")
    return value


def _parse_generate(args: List[str]) -> GenerateCommand:
    """Parse 'generate <path> <size>' command."""
    if len(args) != 2:
        raise ParseError("generate requires exactly 2 arguments: <path> <size>")
    path, size = args
    return GenerateCommand(path=path, size=_parse_size_arg(size, "size"))


def _parse_roots(args: List[str]) -> RootsCommand:
    """Parse 'roots <path> [--fragment-size N]' command."""
    positional, options = _split_options(args, ("--fragment-size",))
    if len(positional) != 1:
        raise ParseError("roots requires exactly 1 argument: <path>")

    fragment_size = None
    if "--fragment-size" in options:
        fragment_size = _parse_size_arg(options["--fragment-size"], "fragment size")
    return RootsCommand(path=positional[0], fragment_size=fragment_size)


def _parse_upload(args: List[str]) -> UploadCommand:
    """Parse 'upload <path> [options]' command."""
    positional, options = _split_options(args, UPLOAD_OPTIONS)
    if len(positional) != 1:
        raise ParseError("upload requires exactly 1 argument: <path>")

    fragment_size = None
    if "--fragment-size" in options:
        fragment_size = _parse_size_arg(options["--fragment-size"], "fragment size")

    replicas = None
    if "--replicas" in options:
        try:
            replicas = int(options["--replicas"])
        except ValueError:
            raise ParseError(f"Invalid replicas: {options['--replicas']}")
        if replicas < 1:
            raise ParseError("replicas must be at least 1")

    finality = options.get("--finality")
    if finality is not None:
        _parse_choice(finality, FinalityRequirement, "finality")
    trust = options.get("--trust")
    if trust is not None:
        _parse_choice(trust, TrustFilter, "trust")
    mode = options.get("--mode")
    if mode is not None:
        _parse_choice(mode, SelectionMode, "mode")

    return UploadCommand(
        path=positional[0],
        fragment_size=fragment_size,
        replicas=replicas,
        finality=finality,
        trust=trust,
        mode=mode,
    )


def _is_root(value: str) -> bool:
    try:
        normalize_root(value)
    except ValueError:
        return False
    return True


def _parse_download(args: List[str]) -> DownloadCommand:
    """Parse 'download <manifest|root...> <output>' command."""
    if len(args) < 2:
        raise ParseError("download requires a manifest or at least one root, and an output path")

    sources, output_path = args[:-1], args[-1]
    if all(_is_root(source) for source in sources):
        return DownloadCommand(output_path=output_path, roots=tuple(normalize_root(s) for s in sources))
    if len(sources) == 1:
        return DownloadCommand(output_path=output_path, manifest_path=sources[0])
    raise ParseError("download takes either one manifest path or a list of roots")


def _parse_verify(args: List[str]) -> VerifyCommand:
    """Parse 'verify <path> <manifest>' command."""
    if len(args) != 2:
        raise ParseError("verify requires exactly 2 arguments: <path> <manifest>")
    path, manifest_path = args
    return VerifyCommand(path=path, manifest_path=manifest_path)
