"""Exit codes for the tapship CLI.

Each failure class of a release maps to its own process exit code so that
wrapper scripts can tell a dirty checkout from a tag conflict without
parsing output.
"""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    """Exit codes for CLI commands.

    These values are used as process exit codes and should remain stable:
    - 0: Success (including "already published")
    - 1: User error (bad input, missing config, aborted at a prompt)
    - 2: Gate failure (wrong branch, dirty tree, stale clone)
    - 3: Version conflict (version not greater than current)
    - 4: Tag conflict (remote tag points elsewhere)
    - 5: Checksum instability (archive digest not reproducible)
    - 6: Publish failure (git commit/push of the release or formula)
    - 7: Build failure (build or tests failed and were not accepted)
    - 8: Network failure (download unavailable after retries)
    - 9: Ledger corrupt (changelog cannot be parsed)
    - 10: Verification rejected (install check failed and was not accepted)
    """

    OK = 0
    USER_ERROR = 1
    GATE_FAILED = 2
    VERSION_CONFLICT = 3
    TAG_CONFLICT = 4
    CHECKSUM_UNSTABLE = 5
    PUBLISH_FAILED = 6
    BUILD_FAILED = 7
    NETWORK_ERROR = 8
    LEDGER_CORRUPT = 9
    VERIFY_REJECTED = 10

    def __str__(self) -> str:
        """Return human-readable name."""
        return self.name.lower().replace("_", " ")
