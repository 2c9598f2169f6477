"""Error presentation utilities.

Centralized error formatting and exit code mapping for consistent UX.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from tapship.core.errors import ErrorCode
from tapship.output.console import Style

if TYPE_CHECKING:
    from tapship.output.console import ConsoleProtocol
    from tapship.services.release.errors import ReleaseError

__all__ = ["print_release_error", "release_error_exit_code"]


def print_release_error(error: ReleaseError, console: ConsoleProtocol) -> None:
    """Print a release error: where it stopped, what failed, what to do."""
    if error.step:
        console.error(f"{error.step}: {error.message}")
    else:
        console.error(error.message)
    if error.hint:
        console.print(f"hint: {error.hint}", Style.DIM)
    if error.kind == "tag_exists":
        console.print(
            "resolutions: retry with a new version | --force-tag to replace | "
            "re-run interactively to adopt",
            Style.DIM,
        )


def release_error_exit_code(error: ReleaseError) -> int:
    """Get exit code for a release error."""
    match error.kind:
        case "wrong_branch" | "dirty_tree" | "stale_remote":
            return int(ErrorCode.GATE_FAILED)
        case "version_conflict":
            return int(ErrorCode.VERSION_CONFLICT)
        case "tag_exists":
            return int(ErrorCode.TAG_CONFLICT)
        case "checksum_unstable":
            return int(ErrorCode.CHECKSUM_UNSTABLE)
        case "publish_failed" | "git_failed":
            return int(ErrorCode.PUBLISH_FAILED)
        case "build_failed":
            return int(ErrorCode.BUILD_FAILED)
        case "download_unavailable":
            return int(ErrorCode.NETWORK_ERROR)
        case "ledger_corrupt":
            return int(ErrorCode.LEDGER_CORRUPT)
        case "verify_failed":
            return int(ErrorCode.VERIFY_REJECTED)
        case (
            "invalid_version_format"
            | "invalid_input"
            | "config_invalid"
            | "state_conflict"
            | "aborted"
        ):
            return int(ErrorCode.USER_ERROR)
    return int(ErrorCode.USER_ERROR)
