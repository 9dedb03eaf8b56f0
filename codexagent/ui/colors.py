# codexagent/ui/colors.py
"""
ANSI color codes for console output.
"""

import re

# ═══════════════════════════════════════════════════════════════
# PALETTE
# ═══════════════════════════════════════════════════════════════

ELECTRIC_CYAN = "\033[38;5;51m"    # Headings / active labels
BRIGHT_MAGENTA = "\033[38;5;201m"  # Model output / highlights
MID_GRAY = "\033[38;5;250m"        # Muted labels
GLITCH_RED = "\033[38;5;196m"      # Errors
GLITCH_GREEN = "\033[38;5;46m"     # Success
NEON_YELLOW = "\033[38;5;226m"     # Warnings / approval prompts

RED = GLITCH_RED
GREEN = GLITCH_GREEN

BOLD = "\033[1m"
DIM = "\033[2m"
RESET = "\033[0m"

# ═══════════════════════════════════════════════════════════════
# SEMANTIC ROLES
# ═══════════════════════════════════════════════════════════════

ACCENT_FG = ELECTRIC_CYAN
MODEL_FG = BRIGHT_MAGENTA
MUTED_FG = MID_GRAY
ERROR_FG = GLITCH_RED
SUCCESS_FG = GLITCH_GREEN
WARNING_FG = NEON_YELLOW

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")


def colorize(text: str, color: str, enabled: bool = True) -> str:
    if not enabled:
        return text
    return f"{color}{text}{RESET}"


def strip_ansi(text: str) -> str:
    """Text without ANSI escape sequences."""
    return _ANSI_RE.sub("", text)


def diff_line_color(line: str) -> str:
    if line.startswith("@@"):
        return ACCENT_FG
    if line.startswith("+") and not line.startswith("+++"):
        return SUCCESS_FG
    if line.startswith("-") and not line.startswith("---"):
        return ERROR_FG
    return ""
