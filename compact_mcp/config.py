from dotenv import load_dotenv
import os

# Load environment variables explicitly
load_dotenv()

# ─── Compiler ────────────────────────────────────────────────────────────────

COMPILER_BINARY = os.getenv("COMPACT_COMPILER", "compact")
# Pins an explicit binary and skips PATH discovery when set.
COMPILER_PATH = os.getenv("COMPACT_COMPILER_PATH") or None

COMPILE_TIMEOUT_SECONDS = int(os.getenv("COMPACT_COMPILE_TIMEOUT", "60"))
VERSION_PROBE_TIMEOUT_SECONDS = 10
MAX_COMPILER_OUTPUT_CHARS = 10 * 1024 * 1024
MAX_RAW_OUTPUT_CHARS = 2000

INSTALL_COMMAND = (
    "curl --proto '=https' --tlsv1.2 -LsSf "
    "https://github.com/midnightntwrk/compact/releases/latest/download/compact-installer.sh | sh"
)
INSTALL_DOCS = "https://docs.midnight.network/develop/tutorial/building"

# ─── Language ────────────────────────────────────────────────────────────────

FILE_EXTENSION = ".compact"
DEFAULT_FILENAME = "contract.compact"
LANGUAGE_VERSION_MIN = "0.16"
LANGUAGE_VERSION_MAX = "0.18"
RECOMMENDED_PRAGMA = f"pragma language_version >= {LANGUAGE_VERSION_MIN} && <= {LANGUAGE_VERSION_MAX};"

# ─── Input limits ────────────────────────────────────────────────────────────

MAX_CODE_SIZE = int(os.getenv("COMPACT_MAX_CODE_SIZE", str(1024 * 1024)))
MAX_CONTROL_CHAR_RATIO = 0.01

# ─── Server ──────────────────────────────────────────────────────────────────

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", 3000))


def min_compiler_version() -> tuple[int, int]:
    major, minor = LANGUAGE_VERSION_MIN.split(".")
    return int(major), int(minor)
