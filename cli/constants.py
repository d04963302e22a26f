"""CLI constants and configuration."""

from prompt_toolkit.styles import Style

COMMANDS = ["generate", "roots", "upload", "download", "verify", "clear", "exit", "help"]

STYLE = Style.from_dict(
    {
        "prompt": "#2FA4A9 bold",
        "command": "#0088ff bold",
    }
)

TEAL = "\033[38;2;47;164;169m"
GREEN = "\033[38;2;80;200;120m"
RESET = "\033[0m"

LOGO = f"""{TEAL}
 ███████╗██╗  ██╗ █████╗ ██████╗ ██████╗ ██╗     ██╗███╗   ██╗███████╗
 ██╔════╝██║  ██║██╔══██╗██╔══██╗██╔══██╗██║     ██║████╗  ██║██╔════╝
 ███████╗███████║███████║██████╔╝██║  ██║██║     ██║██╔██╗ ██║█████╗
 ╚════██║██╔══██║██╔══██║██╔══██╗██║  ██║██║     ██║██║╚██╗██║██╔══╝
 ███████║██║  ██║██║  ██║██║  ██║██████╔╝███████╗██║██║ ╚████║███████╗
 ╚══════╝╚═╝  ╚═╝╚═╝  ╚═╝╚═╝  ╚═╝╚═════╝ ╚══════╝╚═╝╚═╝  ╚═══╝╚══════╝
{RESET}"""

WELCOME_TITLE = "Shardline CLI - Content-addressed chunked uploads"
WELCOME_HELP = "Type 'help' for commands or 'exit' to quit.\n"

PROMPT_TEXT = "shardline> "

HELP_TEXT = """Available commands:
  generate <path> <size>                   Create a sparse test file (size like 1GiB, 500M, 4096)
  roots <path> [--fragment-size N]         Compute fragment roots locally, no upload
  upload <path> [options]                  Upload a file and write <path>.manifest.json
      --fragment-size N                    Bytes per fragment (default from config)
      --replicas N                         Nodes that must hold each fragment
      --finality on-submission|network-confirmed
      --trust trusted-only|allow-discovered
      --mode min-latency|round-robin
  download <manifest|root...> <output>     Download and verify fragments into <output>
  verify <path> <manifest>                 Check a local file against a manifest
  clear                                    Clear screen and redisplay welcome message
  help                                     Show this help
  exit                                     Exit REPL

Examples:
  generate data/big.bin 1GiB
  upload data/big.bin --fragment-size 400MiB --replicas 2
  download data/big.bin.manifest.json restored/big.bin
  download 0x5f1e...c0de restored/part0.bin
  verify restored/big.bin data/big.bin.manifest.json"""
