"""Git operations module.

    from tapship.git import Repository

    repo = Repository(Path("/path/to/repo"))
    status = repo.status()
    if status.is_ok():
        print(f"Branch: {status.unwrap().branch}")
"""

from tapship.git.repository import (
    GitError,
    GitStatus,
    Repository,
    StatusEntry,
)

__all__ = [
    "GitError",
    "GitStatus",
    "Repository",
    "StatusEntry",
]
