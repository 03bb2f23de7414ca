"""Detect new commits on a remote repository without cloning it."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable

from git.cmd import Git
from git.exc import CommandError

from pkgwatch import config
from pkgwatch.models.schemas import CommitCheck, RemoteHead

# "<sha>\tHEAD"
_HEAD_PATTERN = re.compile(r"^([a-f0-9]{40})\s+HEAD$", re.MULTILINE)

# "ref: refs/heads/main\tHEAD"
_SYMREF_PATTERN = re.compile(r"ref: refs/heads/([^\t\n]+)\s+HEAD")

# (clone_url, extra ls-remote options, timeout) -> stdout
LsRemoteRunner = Callable[[str, tuple[str, ...], int], str]


def git_ls_remote(url: str, options: tuple[str, ...], timeout: int) -> str:
    """Run ``git ls-remote [options] <url> HEAD`` and return its output."""
    return Git().ls_remote(*options, url, "HEAD", kill_after_timeout=timeout)


class RemoteChecker:
    """Checks remote repository heads with ``git ls-remote``.

    Commands run in a worker thread and are killed after ``timeout``
    seconds. Failures are reported on the result, never raised.
    """

    def __init__(
        self,
        timeout: int = config.REMOTE_TIMEOUT_SECONDS,
        runner: LsRemoteRunner | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.timeout = timeout
        self._runner = runner or git_ls_remote
        self._log = logger or logging.getLogger(__name__)

    async def _ls_remote(self, url: str, *options: str) -> str:
        return await asyncio.to_thread(self._runner, url, options, self.timeout)

    async def get_head(self, clone_url: str) -> RemoteHead:
        """Resolve the HEAD sha and default branch of a remote repository.

        Args:
            clone_url: Repository URL (anything git accepts).

        Returns:
            RemoteHead with sha and branch, or with error set.
        """
        try:
            output = await self._ls_remote(clone_url)
        except (CommandError, OSError) as e:
            self._log.warning(f"git ls-remote failed for {clone_url}: {e}")
            return RemoteHead(error=f"Failed to get remote HEAD: {e}")

        match = _HEAD_PATTERN.search(output.strip())
        if not match:
            self._log.warning(f"Unparsable git ls-remote output for {clone_url}")
            return RemoteHead(
                error=f"Could not parse HEAD SHA from output: {output[:100]}"
            )

        return RemoteHead(sha=match.group(1), branch=await self._get_branch(clone_url))

    async def _get_branch(self, clone_url: str) -> str | None:
        """Best-effort default branch lookup via ``--symref``."""
        try:
            output = await self._ls_remote(clone_url, "--symref")
        except (CommandError, OSError) as e:
            self._log.debug(f"Branch lookup failed for {clone_url}: {e}")
            return None

        match = _SYMREF_PATTERN.search(output)
        return match.group(1).strip() if match else None

    async def has_new_commits(
        self,
        clone_url: str,
        last_known_sha: str | None,
    ) -> CommitCheck:
        """Compare the remote head with the last commit on record.

        With no commit on record, any resolvable head counts as a change.
        A lookup error reports no change; the next cycle retries.
        """
        head = await self.get_head(clone_url)
        if head.error or not head.sha:
            return CommitCheck(has_changes=False, error=head.error or "No HEAD sha")

        return CommitCheck(
            has_changes=last_known_sha is None or head.sha != last_known_sha,
            current_sha=head.sha,
            branch=head.branch,
        )
