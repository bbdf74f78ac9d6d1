"""
Source control interface for committing agent output.

Implementations wrap a hosting service (GitHub, GitLab, a local
repository). Any failure is raised as ``SourceControlError`` so the
failure handler can classify it as an integration problem.
"""

from abc import ABC, abstractmethod


class SourceControl(ABC):
    """
    Abstract source control backend.

    Example:
        >>> vcs = MyGitHubBackend(repo="acme/shop")
        >>> if not await vcs.branch_exists("task/create-user-model"):
        ...     await vcs.create_branch("task/create-user-model")
        >>> await vcs.write_files("task/create-user-model", files, "Create User model")
        >>> url = await vcs.create_pull_request(
        ...     "task/create-user-model", "Create User model", "..."
        ... )
    """

    @abstractmethod
    async def branch_exists(self, branch: str) -> bool:
        """Check whether a branch exists."""
        ...

    @abstractmethod
    async def create_branch(self, branch: str, base: str = "main") -> None:
        """
        Create a branch from ``base``.

        Raises:
            SourceControlError: If the branch cannot be created.
        """
        ...

    @abstractmethod
    async def write_files(self, branch: str, files: dict[str, str], message: str) -> None:
        """
        Commit files to a branch.

        Args:
            branch: Target branch.
            files: File path -> file content.
            message: Commit message.

        Raises:
            SourceControlError: If the commit fails.
        """
        ...

    @abstractmethod
    async def create_pull_request(self, branch: str, title: str, body: str) -> str:
        """
        Open a pull request from ``branch``.

        Returns:
            URL of the pull request.

        Raises:
            SourceControlError: If the pull request cannot be created.
        """
        ...

    @abstractmethod
    async def check_merge_conflicts(self, branch: str) -> bool:
        """Check whether ``branch`` conflicts with its base."""
        ...

    @abstractmethod
    async def get_conflicting_files(self, branch: str) -> list[str]:
        """Get the paths that conflict between ``branch`` and its base."""
        ...


def branch_name_for(task_id: str, title: str) -> str:
    """
    Derive a branch name for a task.

    Example:
        >>> branch_name_for("3f2a9c1e-...", "Create User model")
        'task/create-user-model-3f2a9c1e'
    """
    slug = "-".join(
        "".join(ch for ch in word if ch.isalnum()) for word in title.lower().split()
    ).strip("-")
    slug = "-".join(part for part in slug.split("-") if part)[:40].rstrip("-")
    return f"task/{slug or 'task'}-{task_id[:8]}"
