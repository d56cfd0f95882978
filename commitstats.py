#!/usr/bin/env python3
"""
Commit Statistics Analyzer (v1.0.0)

Extracts commit history from a git repository and summarizes it along
several dimensions:
- Per-author totals (commits, files changed, lines added/deleted)
- Calendar-month buckets
- Weekday buckets (Mon..Sun)
- Hour-of-day buckets (0..23, UTC)
- Weekday x hour activity heatmap per author

Authors are grouped by identity rather than exact text: two commits
belong to the same person when their names match case-insensitively or
their emails do.
"""

import json
import logging
import os
import re
import subprocess
import sys
import time
import calendar
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

import click
import yaml
from colorama import Fore, Style, just_fix_windows_console
from tqdm import tqdm

VERSION = "1.0.0"
SCHEMA_VERSION = "1.0.0"

U32_MAX = 2**32 - 1
COUNT_MAX = sys.maxsize

WEEKDAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
DAYS_PER_WEEK = 7
HOURS_PER_DAY = 24

logger = logging.getLogger(__name__)


# ============================================================================
# ERRORS
# ============================================================================


class CommitStatsError(Exception):
    """Base class for every error raised by this module"""


class AuthorParseError(CommitStatsError, ValueError):
    """Author text matched neither a bare name nor a name-with-email"""


class CommitArgsError(CommitStatsError, ValueError):
    """Commit selection filter is inconsistent"""


class GitCommandError(CommitStatsError, RuntimeError):
    """A git subprocess could not be run or exited non-zero"""


class CommitParseError(CommitStatsError, ValueError):
    """Output of git show could not be turned into a CommitDetail"""


# ============================================================================
# DATA MODEL
# ============================================================================

AUTHOR_STR_RE = re.compile(r'^(?:"?([^"]*)"?\s)?(?:<?(.+@[^>]+)?>?)$')
BARE_NAME_RE = re.compile(r'^"?([^"<>@]+?)"?$')


def _saturating_add(a: int, b: int, limit: int) -> int:
    return min(a + b, limit)


@dataclass(frozen=True)
class Author:
    """
    A commit author.

    Equality (``==``) and hashing are structural so an Author can key a
    dict. Whether two authors are the *same person* is a looser rule,
    see ``same_person``; grouping always goes through ``IdentityResolver``.
    """

    name: str
    email: Optional[str] = None

    @classmethod
    def from_text(cls, value: str) -> "Author":
        """
        Parse a free-form ``Name <email>`` string.

        Both parts are optional: ``"Jane Doe <>"`` gives no email,
        ``"<jane@example.com>"`` gives an empty name.

        Raises:
            AuthorParseError: if nothing usable can be extracted
        """
        text = value.strip()
        match = AUTHOR_STR_RE.match(text)
        if match:
            name, email = match.group(1), match.group(2)
        else:
            bare = BARE_NAME_RE.match(text)
            if not bare:
                raise AuthorParseError(f"failed to parse author string. Got {value!r}")
            name, email = bare.group(1), None

        if not name and not email:
            raise AuthorParseError(f"failed to extract author from {value!r}")

        return cls(name=(name or "").strip(), email=email or None)

    def with_email(self, email: Optional[str]) -> "Author":
        return replace(self, email=email or None)

    def same_person(self, other: "Author") -> bool:
        """Names match case-insensitively, or both emails exist and match."""
        if self.name.lower() == other.name.lower():
            return True
        if self.email is not None and other.email is not None:
            return self.email.lower() == other.email.lower()
        return False

    def __str__(self) -> str:
        return f"{self.name} <{self.email or ''}>"


def authors_match(a: Author, b: Author) -> bool:
    return a.same_person(b)


@dataclass(frozen=True)
class CommitHash:
    value: str

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class CommitStats:
    """Files/lines touched by one or more commits. Addition saturates at u32."""

    files_changed: int = 0
    lines_added: int = 0
    lines_deleted: int = 0

    @classmethod
    def zero(cls) -> "CommitStats":
        return cls()

    def __add__(self, other: "CommitStats") -> "CommitStats":
        if not isinstance(other, CommitStats):
            return NotImplemented
        return CommitStats(
            files_changed=_saturating_add(self.files_changed, other.files_changed, U32_MAX),
            lines_added=_saturating_add(self.lines_added, other.lines_added, U32_MAX),
            lines_deleted=_saturating_add(self.lines_deleted, other.lines_deleted, U32_MAX),
        )

    def __radd__(self, other):
        # lets sum() start from 0
        if other == 0:
            return self
        return NotImplemented

    def __str__(self) -> str:
        return (
            f"files changed: {self.files_changed}, lines added: {self.lines_added}, "
            f"lines deleted: {self.lines_deleted}"
        )


@dataclass(frozen=True)
class CommitDetail:
    """One parsed commit as produced by ``Repo.commit_stats``"""

    hash: CommitHash
    author: Author
    author_timestamp: int
    stats: CommitStats = field(default_factory=CommitStats)
    subject: str = ""

    @property
    def author_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.author_timestamp, timezone.utc)

    def to_minimal(self) -> "MinimalCommitDetail":
        return MinimalCommitDetail(
            hash=self.hash, author_timestamp=self.author_timestamp, stats=self.stats
        )

    def __str__(self) -> str:
        return f"{self.hash}, author: {self.author}, {self.author_datetime}, {self.stats}"


@dataclass(frozen=True)
class MinimalCommitDetail:
    hash: CommitHash
    author_timestamp: int
    stats: CommitStats

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": str(self.hash),
            "author_timestamp": self.author_timestamp,
            "stats": asdict(self.stats),
        }

    def __str__(self) -> str:
        return f"{self.hash} {self.stats}"


@dataclass(frozen=True)
class SimpleStat:
    """Commit tally plus summed stats; the unit every bucket accumulates."""

    commits_count: int = 0
    stats: CommitStats = field(default_factory=CommitStats)

    @classmethod
    def zero(cls) -> "SimpleStat":
        return cls()

    @classmethod
    def from_commit(cls, commit: CommitDetail) -> "SimpleStat":
        return cls(commits_count=1, stats=commit.stats)

    def __add__(self, other: "SimpleStat") -> "SimpleStat":
        if not isinstance(other, SimpleStat):
            return NotImplemented
        return SimpleStat(
            commits_count=_saturating_add(self.commits_count, other.commits_count, COUNT_MAX),
            stats=self.stats + other.stats,
        )

    def __radd__(self, other):
        if other == 0:
            return self
        return NotImplemented

    def to_dict(self) -> Dict[str, Any]:
        return {"commits_count": self.commits_count, **asdict(self.stats)}

    def __str__(self) -> str:
        return f"total commits: {self.commits_count}, {self.stats}"


@dataclass(frozen=True)
class GlobalStat:
    author: Author
    commits_count: int
    stats: CommitStats

    def to_dict(self) -> Dict[str, Any]:
        return {
            "author": self.author.name,
            "email": self.author.email,
            "commits_count": self.commits_count,
            **asdict(self.stats),
        }

    def __str__(self) -> str:
        return f"author: {self.author}, total commits: {self.commits_count}, {self.stats}"


class SortStatsBy(Enum):
    COMMITS = "commits"
    FILES_CHANGED = "files"
    LINES_ADDED = "added"
    LINES_DELETED = "deleted"

    def value_of(self, stat: GlobalStat) -> int:
        if self is SortStatsBy.COMMITS:
            return stat.commits_count
        if self is SortStatsBy.FILES_CHANGED:
            return stat.stats.files_changed
        if self is SortStatsBy.LINES_ADDED:
            return stat.stats.lines_added
        return stat.stats.lines_deleted


# ============================================================================
# IDENTITY RESOLUTION
# ============================================================================


class IdentityResolver:
    """
    Assign every Author a canonical identity.

    ``Author.same_person`` is not transitive and cannot be expressed as a
    hash, so authors are merged with a union-find: each distinct author is
    joined to the first author seen with the same lower-cased name and to
    the first seen with the same lower-cased email. The class
    representative is always the first-seen member.
    """

    def __init__(self):
        self._authors: List[Author] = []
        self._parent: List[int] = []
        self._index: Dict[Author, int] = {}
        self._by_name: Dict[str, int] = {}
        self._by_email: Dict[str, int] = {}

    @classmethod
    def from_commits(cls, commits: Iterable[CommitDetail]) -> "IdentityResolver":
        resolver = cls()
        for commit in commits:
            resolver.add(commit.author)
        return resolver

    def add(self, author: Author) -> int:
        """Register an author, returning its raw slot id"""
        if author in self._index:
            return self._index[author]

        slot = len(self._authors)
        self._authors.append(author)
        self._parent.append(slot)
        self._index[author] = slot

        name_key = author.name.lower()
        if name_key in self._by_name:
            self._union(self._by_name[name_key], slot)
        else:
            self._by_name[name_key] = slot

        if author.email is not None:
            email_key = author.email.lower()
            if email_key in self._by_email:
                self._union(self._by_email[email_key], slot)
            else:
                self._by_email[email_key] = slot

        return slot

    def _find(self, slot: int) -> int:
        root = slot
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[slot] != root:
            self._parent[slot], slot = root, self._parent[slot]
        return root

    def _union(self, a: int, b: int):
        root_a, root_b = self._find(a), self._find(b)
        if root_a == root_b:
            return
        # lowest slot wins so the first-seen author stays representative
        if root_b < root_a:
            root_a, root_b = root_b, root_a
        self._parent[root_b] = root_a

    def canonical_id(self, author: Author) -> int:
        return self._find(self.add(author))

    def resolve(self, author: Author) -> Author:
        """Representative (first-seen) Author for this author's identity class"""
        return self._authors[self.canonical_id(author)]

    def __len__(self) -> int:
        return len({self._find(slot) for slot in range(len(self._authors))})


# ============================================================================
# GROUPED RESULTS
# ============================================================================


def _empty_matrix() -> List[List[SimpleStat]]:
    return [[SimpleStat.zero() for _ in range(HOURS_PER_DAY)] for _ in range(DAYS_PER_WEEK)]


class GroupedStats:
    """Read-only mapping wrapper shared by every grouped result"""

    def __init__(self, data: Dict):
        self._data = data

    def detailed_stats(self) -> Dict:
        return self._data

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator:
        return iter(self._data)

    def __getitem__(self, key):
        return self._data[key]

    def __contains__(self, key) -> bool:
        return key in self._data

    def items(self):
        return self._data.items()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({len(self._data)} entries)"


class CommitsPerAuthor(GroupedStats):
    """Author -> commits of that author in input order"""

    def global_stats(self, sort_stats_by: SortStatsBy = SortStatsBy.COMMITS) -> List[GlobalStat]:
        """
        One GlobalStat per author, sorted descending by ``sort_stats_by``.

        Ties are broken by author name (case-insensitive), then by the
        order authors were first seen.
        """
        rows = []
        for author, commits in self._data.items():
            if not commits:
                raise ValueError(f"no commits recorded for {author}")
            rows.append(
                GlobalStat(
                    author=author,
                    commits_count=len(commits),
                    stats=sum(commit.stats for commit in commits),
                )
            )

        return sorted(rows, key=lambda row: (-sort_stats_by.value_of(row), row.author.name.lower()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            str(author): [commit.to_dict() for commit in commits]
            for author, commits in self._data.items()
        }


class BucketedStats(GroupedStats):
    """bucket -> (Author -> SimpleStat)"""

    def bucket_label(self, key) -> str:
        return str(key)

    def global_stats(self) -> Dict[Any, SimpleStat]:
        """Collapse each bucket's per-author map into a single total"""
        return {
            key: sum(per_author.values(), SimpleStat.zero())
            for key, per_author in self._data.items()
        }

    def total(self) -> SimpleStat:
        return sum(self.global_stats().values(), SimpleStat.zero())

    def to_dict(self) -> Dict[str, Any]:
        return {
            self.bucket_label(key): {
                str(author): stat.to_dict() for author, stat in per_author.items()
            }
            for key, per_author in sorted(self._data.items())
        }


class CommitsPerMonth(BucketedStats):
    """'YYYY-MM' -> (Author -> SimpleStat)"""


class CommitsPerWeekday(BucketedStats):
    """weekday (0=Mon .. 6=Sun) -> (Author -> SimpleStat)"""

    def bucket_label(self, key) -> str:
        return WEEKDAY_NAMES[key]


class CommitsPerDayHour(BucketedStats):
    """hour of day (0..23) -> (Author -> SimpleStat)"""

    def bucket_label(self, key) -> str:
        return f"{key:02d}"


class CommitsHeatMap(GroupedStats):
    """Author -> 7x24 grid of SimpleStat indexed [weekday][hour]"""

    def global_stats(self) -> List[List[SimpleStat]]:
        grid = _empty_matrix()
        for matrix in self._data.values():
            for weekday, hours in enumerate(matrix):
                for hour, stat in enumerate(hours):
                    grid[weekday][hour] = grid[weekday][hour] + stat
        return grid

    def to_dict(self) -> Dict[str, Any]:
        return {
            str(author): [[cell.to_dict() for cell in row] for row in matrix]
            for author, matrix in self._data.items()
        }


# ============================================================================
# AGGREGATION ENGINE
# ============================================================================


def _fold(bucket: Dict[Author, SimpleStat], author: Author, commit: CommitDetail):
    bucket[author] = bucket.get(author, SimpleStat.zero()) + SimpleStat.from_commit(commit)


def commits_per_author(commits: Iterable[CommitDetail]) -> CommitsPerAuthor:
    """Partition commits by author identity, keeping input order inside each group"""
    commits = list(commits)
    resolver = IdentityResolver.from_commits(commits)
    groups: Dict[Author, List[MinimalCommitDetail]] = {}
    for commit in commits:
        groups.setdefault(resolver.resolve(commit.author), []).append(commit.to_minimal())
    return CommitsPerAuthor(groups)


def commits_per_weekday(commits: Iterable[CommitDetail]) -> CommitsPerWeekday:
    commits = list(commits)
    resolver = IdentityResolver.from_commits(commits)
    buckets: Dict[int, Dict[Author, SimpleStat]] = {day: {} for day in range(DAYS_PER_WEEK)}
    for commit in commits:
        weekday = commit.author_datetime.weekday()
        _fold(buckets[weekday], resolver.resolve(commit.author), commit)
    return CommitsPerWeekday(buckets)


def commits_per_day_hour(commits: Iterable[CommitDetail]) -> CommitsPerDayHour:
    commits = list(commits)
    resolver = IdentityResolver.from_commits(commits)
    buckets: Dict[int, Dict[Author, SimpleStat]] = {hour: {} for hour in range(HOURS_PER_DAY)}
    for commit in commits:
        _fold(buckets[commit.author_datetime.hour], resolver.resolve(commit.author), commit)
    return CommitsPerDayHour(buckets)


def commits_heatmap(commits: Iterable[CommitDetail]) -> CommitsHeatMap:
    commits = list(commits)
    resolver = IdentityResolver.from_commits(commits)
    heatmap: Dict[Author, List[List[SimpleStat]]] = {}
    for commit in commits:
        author = resolver.resolve(commit.author)
        if author not in heatmap:
            heatmap[author] = _empty_matrix()
        dt = commit.author_datetime
        row = heatmap[author][dt.weekday()]
        row[dt.hour] = row[dt.hour] + SimpleStat.from_commit(commit)
    return CommitsHeatMap(heatmap)


def _days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(dt: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's length"""
    index = dt.year * 12 + (dt.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    return dt.replace(year=year, month=month, day=min(dt.day, _days_in_month(year, month)))


def commits_per_month(commits: Iterable[CommitDetail]) -> CommitsPerMonth:
    """
    Bucket commits into month-long windows.

    The first window starts at the first commit's month, aligned to the
    last commit's day-of-month at midnight UTC, and advances one calendar
    month at a time until it passes the last commit. Every commit whose
    (year, month) is not after the window's lands in that window, so
    each commit is counted exactly once. The input is never modified.

    Returns an empty result for fewer than two commits.
    """
    ordered = sorted(commits, key=lambda commit: commit.author_timestamp)
    buckets: Dict[str, Dict[Author, SimpleStat]] = {}
    if len(ordered) < 2:
        return CommitsPerMonth(buckets)

    resolver = IdentityResolver.from_commits(ordered)
    first_date = ordered[0].author_datetime
    last_date = ordered[-1].author_datetime
    window = first_date.replace(
        day=min(last_date.day, _days_in_month(first_date.year, first_date.month)),
        hour=0,
        minute=0,
        second=0,
        microsecond=0,
    )

    position = 0
    while position < len(ordered):
        key = window.replace(day=1).strftime("%Y-%m")
        bucket: Dict[Author, SimpleStat] = {}
        while position < len(ordered):
            commit = ordered[position]
            commit_date = commit.author_datetime
            if (commit_date.year, commit_date.month) > (window.year, window.month):
                break
            _fold(bucket, resolver.resolve(commit.author), commit)
            position += 1
        buckets[key] = bucket

        window = add_months(window, 1)
        if window > last_date:
            break

    return CommitsPerMonth(buckets)


# ============================================================================
# COMMIT SELECTION FILTER
# ============================================================================


def _to_datetime(timestamp: int, label: str) -> datetime:
    try:
        return datetime.fromtimestamp(timestamp, timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise CommitArgsError(f"invalid datetime specified for {label}: {timestamp}") from e


@dataclass
class CommitArgs:
    """Which commits ``Repo.list_commits`` should return"""

    since: Optional[int] = None
    until: Optional[int] = None
    author: Optional[Author] = None
    exclude_merges: bool = False
    exclude_author: Optional[str] = None
    target_branch: Optional[str] = None

    @staticmethod
    def builder() -> "CommitArgsBuilder":
        return CommitArgsBuilder()

    def validate(self):
        if self.author is not None and self.exclude_author is not None:
            raise CommitArgsError("cannot specify both author and exclude_author")
        if self.since is not None:
            _to_datetime(self.since, "since")
        if self.until is not None:
            _to_datetime(self.until, "until")

    def to_git_args(self) -> List[str]:
        """Arguments for ``git log`` selecting these commits"""
        args = [self.target_branch or "--all", "--pretty=%H"]

        if self.since is not None:
            args.append(f"--since={_to_datetime(self.since, 'since'):%Y-%m-%d}")
        if self.until is not None:
            args.append(f"--until={_to_datetime(self.until, 'until'):%Y-%m-%d}")
        if self.author is not None:
            args.append(f"--author={self.author.name}")
        if self.exclude_merges:
            args.append("--no-merges")
        if self.exclude_author is not None:
            args.append("--perl-regexp")
            args.append(f"--author=^((?!{self.exclude_author}).*)$")

        return args

    def __iter__(self) -> Iterator[str]:
        return iter(self.to_git_args())

    def __str__(self) -> str:
        parts = []
        if self.author is not None:
            parts.append(f"author:{self.author}")
        if self.exclude_author is not None:
            parts.append(f"exclude author:{self.exclude_author}")
        if self.exclude_merges:
            parts.append("exclude_merges:true")
        if self.target_branch is not None:
            parts.append(f"target_branch:{self.target_branch}")
        if self.since is not None:
            parts.append(f"since:{_to_datetime(self.since, 'since'):%Y-%m-%d}")
        if self.until is not None:
            parts.append(f"until:{_to_datetime(self.until, 'until'):%Y-%m-%d}")
        return ", ".join(parts)


class CommitArgsBuilder:
    def __init__(self):
        self._args = CommitArgs()

    def since(self, value: int) -> "CommitArgsBuilder":
        self._args.since = value
        return self

    def until(self, value: int) -> "CommitArgsBuilder":
        self._args.until = value
        return self

    def author(self, value: Author) -> "CommitArgsBuilder":
        self._args.author = value
        return self

    def exclude_author(self, value: str) -> "CommitArgsBuilder":
        self._args.exclude_author = value
        return self

    def exclude_merges(self, value: bool = True) -> "CommitArgsBuilder":
        self._args.exclude_merges = value
        return self

    def target_branch(self, value: str) -> "CommitArgsBuilder":
        self._args.target_branch = value
        return self

    def build(self) -> CommitArgs:
        """Validate and return the filter. Raises CommitArgsError."""
        self._args.validate()
        return self._args


# ============================================================================
# GIT ADAPTER
# ============================================================================

SHORT_STATS_RE = re.compile(
    r"(?P<files>\d+) files? changed"
    r"(, (?P<insertions>\d+) insertions?\(\+\))?"
    r"(, (?P<deletions>\d+) deletions?\(-\))?$"
)

SHOW_FORMAT = "--pretty=format:%H%n%aN%n%aE%n%at%n%s"


def parse_commit_output(output: str, commit: Optional[CommitHash] = None) -> CommitDetail:
    """
    Build a CommitDetail from ``git show --shortstat`` output.

    Expected layout: hash, author name, author email, author timestamp,
    subject, then an optional shortstat line. Commits without a
    shortstat line (empty or merge commits) get zero stats.

    Raises:
        CommitParseError: if the header lines are missing or malformed
    """
    lines = output.splitlines()
    if len(lines) < 4:
        raise CommitParseError(f"unexpected git show output for {commit}: {output[:80]!r}")

    commit_hash, author_name, author_email, raw_timestamp = (line.strip() for line in lines[:4])
    if not commit_hash:
        raise CommitParseError("commit hash not found")
    if not author_name and not author_email:
        raise CommitParseError(f"author not found for {commit_hash}")

    try:
        author_timestamp = int(raw_timestamp)
    except ValueError as e:
        raise CommitParseError(f"invalid timestamp {raw_timestamp!r} for {commit_hash}") from e

    subject = lines[4] if len(lines) > 4 else ""

    stats = CommitStats.zero()
    stats_line = next((line.strip() for line in reversed(lines[5:]) if line.strip()), "")
    match = SHORT_STATS_RE.search(stats_line)
    if match:
        stats = CommitStats(
            files_changed=min(int(match.group("files")), U32_MAX),
            lines_added=min(int(match.group("insertions") or 0), U32_MAX),
            lines_deleted=min(int(match.group("deletions") or 0), U32_MAX),
        )

    return CommitDetail(
        hash=commit or CommitHash(commit_hash),
        author=Author(author_name).with_email(author_email),
        author_timestamp=author_timestamp,
        stats=stats,
        subject=subject,
    )


class Repo:
    """A local git repository driven through the ``git`` executable"""

    def __init__(self, path: str):
        self.path = os.path.abspath(path)

    def _git(self, *args: str) -> str:
        cmd = ["git", "-C", self.path, *args]
        logger.debug("running %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            raise GitCommandError(f"Failed to run git: {e}") from e

        if result.returncode != 0:
            raise GitCommandError(
                f"Git command failed ({' '.join(args[:2])}): {result.stderr.strip()}"
            )
        return result.stdout

    def git_dir(self) -> str:
        """Path of the repository's git directory. Raises GitCommandError outside a work tree."""
        return self._git("rev-parse", "--git-dir").strip()

    def fetch(self):
        self._git("fetch")

    def fetch_all(self):
        self._git("fetch", "--all")

    def list_commits(self, args: Optional[CommitArgs] = None) -> List[CommitHash]:
        """Hashes matching ``args``, oldest first"""
        args = args or CommitArgs()
        args.validate()
        output = self._git("log", *args.to_git_args(), "--reverse")
        return [CommitHash(line.strip()) for line in output.splitlines() if line.strip()]

    def commit_stats(self, commit: CommitHash) -> CommitDetail:
        output = self._git("show", "--shortstat", SHOW_FORMAT, str(commit))
        return parse_commit_output(output, commit)

    def commits_stats(
        self,
        commits: Iterable[CommitHash],
        max_workers: Optional[int] = None,
        progress: Optional[Callable[[int], Any]] = None,
    ) -> List[CommitDetail]:
        """
        Extract every commit in parallel.

        Results keep the order of ``commits``. On the first failure, work
        that has not started is cancelled and the running extractions are
        allowed to finish. The failure of the earliest hash in ``commits``
        is then re-raised; no partial list is ever returned.

        Args:
            commits: hashes to extract
            max_workers: thread pool size (executor default when None)
            progress: called with 1 after each finished extraction
        """
        hashes = list(commits)
        results: List[Optional[CommitDetail]] = [None] * len(hashes)
        if not hashes:
            return []

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                executor.submit(self.commit_stats, commit): index
                for index, commit in enumerate(hashes)
            }
            failures: Dict[int, BaseException] = {}
            try:
                for future in as_completed(futures):
                    if future.cancelled():
                        continue
                    index = futures[future]
                    error = future.exception()
                    if error is not None:
                        if not failures:
                            for pending in futures:
                                pending.cancel()
                        failures[index] = error
                        continue
                    results[index] = future.result()
                    if progress:
                        progress(1)
            except BaseException:
                for future in futures:
                    future.cancel()
                raise

        if failures:
            raise failures[min(failures)]
        return results

    def __str__(self) -> str:
        return self.path


# ============================================================================
# CONFIGURATION FILE SUPPORT
# ============================================================================

CONFIG_NAMES = [".commitstats.yaml", ".commitstats.yml", ".commitstats.json"]

PRESETS: Dict[str, Dict[str, Any]] = {
    "recent": {"months": 1, "exclude_merges": True},
    "quarter": {"months": 3},
    "year": {"months": 12, "report": "all"},
    "full": {"report": "all"},
}


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML or JSON file"""
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    file_ext = os.path.splitext(config_path)[1].lower()

    with open(config_path, "r", encoding="utf-8") as f:
        if file_ext in [".yaml", ".yml"]:
            return yaml.safe_load(f) or {}
        elif file_ext == ".json":
            return json.load(f)
        else:
            raise ValueError(f"Unsupported config file format: {file_ext}")


def find_config_file(repo_path: str) -> Optional[str]:
    """Look for a config file in the repository, then the current directory"""
    for search_dir in [repo_path, os.getcwd()]:
        for config_name in CONFIG_NAMES:
            config_path = os.path.join(search_dir, config_name)
            if os.path.exists(config_path):
                return config_path
    return None


class ConfigResolver:
    """
    Resolve settings with precedence: CLI > Config File > Preset > Defaults
    """

    def __init__(
        self,
        cli_args: Dict[str, Any],
        config_path: Optional[str],
        preset_name: Optional[str],
        repo_path: str,
    ):
        self.cli = {k: v for k, v in cli_args.items() if v is not None}
        self.config = {}
        self.config_path = config_path

        if config_path:
            self.config = load_config_file(config_path)
        else:
            auto_path = find_config_file(repo_path)
            if auto_path:
                try:
                    self.config = load_config_file(auto_path)
                    self.config_path = auto_path
                except (OSError, ValueError, yaml.YAMLError) as e:
                    logger.warning("Found config file %s but failed to load: %s", auto_path, e)

        if not isinstance(self.config, dict):
            raise ValueError(f"Configuration must be a mapping, got {type(self.config).__name__}")

        # kebab-case to snake_case
        self.config = {k.replace("-", "_"): v for k, v in self.config.items()}

        final_preset_name = preset_name or self.config.get("preset")
        if final_preset_name and final_preset_name not in PRESETS:
            raise ValueError(f"Unknown preset: {final_preset_name}")
        self.preset = PRESETS.get(final_preset_name, {}) if final_preset_name else {}

    def get(self, key: str, default: Any = None) -> Any:
        if key in self.cli:
            return self.cli[key]
        if key in self.config:
            return self.config[key]
        if key in self.preset:
            return self.preset[key]
        return default


# ============================================================================
# PROGRESS REPORTING & RENDERING
# ============================================================================


class ProgressReporter:
    """
    Console output for the CLI
    - Color-coded messages (colorama)
    - Progress bar for commit extraction (tqdm)
    - Plain-text tables for reports
    """

    def __init__(self, quiet: bool = False, verbose: bool = False, use_colors: bool = True):
        self.quiet = quiet
        self.verbose = verbose
        self.use_colors = use_colors
        self.start_time = time.time()
        self.stage_times = {}

    def _colorize(self, text: str, color: str) -> str:
        if self.use_colors:
            return f"{color}{text}{Style.RESET_ALL}"
        return text

    def stage_start(self, stage_name: str, message: str = ""):
        if self.quiet:
            return
        self.stage_times[stage_name] = time.time()
        print(self._colorize(f"==> {stage_name}", Fore.BLUE + Style.BRIGHT))
        if message:
            print(f"   {message}")

    def stage_complete(self, stage_name: str, stats: Optional[Dict] = None):
        if self.quiet:
            return
        elapsed = time.time() - self.stage_times.get(stage_name, time.time())
        print(self._colorize(f"✅ {stage_name} complete ({elapsed:.2f}s)", Fore.GREEN))

        if stats and self.verbose:
            for key, value in stats.items():
                print(f"   {key}: {value}")

    def create_progress_bar(self, total: int, desc: str = "Extracting") -> Optional[tqdm]:
        if self.quiet:
            return None
        return tqdm(
            total=total,
            desc=desc,
            unit=" commits",
            ncols=100,
            disable=total == 0,
        )

    def info(self, message: str):
        if not self.quiet:
            print(f"{self._colorize('ℹ️  ', Fore.BLUE)}{message}")

    def warning(self, message: str):
        if not self.quiet:
            print(f"{self._colorize('⚠️  ', Fore.YELLOW + Style.BRIGHT)}{message}")

    def error(self, message: str):
        """Always shown, on stderr"""
        print(self._colorize(f"❌ ERROR: {message}", Fore.RED + Style.BRIGHT), file=sys.stderr)

    def success(self, message: str):
        if not self.quiet:
            print(self._colorize(f"✨ {message}", Fore.GREEN + Style.BRIGHT))

    def table(self, title: str, headers: List[str], rows: List[List[Any]]):
        """Print an aligned text table. Reports are printed even in quiet mode."""
        cells = [[str(value) for value in row] for row in rows]
        widths = [len(header) for header in headers]
        for row in cells:
            for i, value in enumerate(row):
                widths[i] = max(widths[i], len(value))

        def line(values):
            return "  ".join(value.rjust(widths[i]) if i else value.ljust(widths[i])
                             for i, value in enumerate(values))

        separator = "-" * (sum(widths) + 2 * (len(widths) - 1))
        print()
        print(self._colorize(title, Fore.MAGENTA + Style.BRIGHT))
        print(self._colorize(line(headers), Style.BRIGHT))
        print(separator)
        for row in cells:
            print(line(row))

    def summary(self, stats: Dict[str, Any]):
        if self.quiet:
            return
        elapsed = time.time() - self.start_time
        separator = self._colorize("=" * 70, Fore.CYAN)
        print(f"\n{separator}")
        print(self._colorize("📊 SUMMARY", Fore.MAGENTA + Style.BRIGHT))
        print(separator)
        for key, value in stats.items():
            print(f"   {key}: {value}")
        print(self._colorize(f"⏱️  Total time: {elapsed:.2f}s", Fore.YELLOW))


STAT_HEADERS = ["Commits", "Files", "Added", "Deleted"]


def _stat_cells(stat: SimpleStat) -> List[int]:
    return [
        stat.commits_count,
        stat.stats.files_changed,
        stat.stats.lines_added,
        stat.stats.lines_deleted,
    ]


def render_authors(reporter: ProgressReporter, per_author: CommitsPerAuthor, sort_by: SortStatsBy):
    rows = [
        [str(row.author)] + _stat_cells(SimpleStat(row.commits_count, row.stats))
        for row in per_author.global_stats(sort_by)
    ]
    reporter.table(f"Commits per author (by {sort_by.value})", ["Author"] + STAT_HEADERS, rows)


def render_buckets(reporter: ProgressReporter, title: str, label: str, grouped: BucketedStats):
    totals = grouped.global_stats()
    rows = [[grouped.bucket_label(key)] + _stat_cells(totals[key]) for key in sorted(totals)]
    reporter.table(title, [label] + STAT_HEADERS, rows)


def render_heatmap(reporter: ProgressReporter, heatmap: CommitsHeatMap):
    grid = heatmap.global_stats()
    rows = [
        [WEEKDAY_NAMES[weekday]] + [cell.commits_count for cell in hours]
        for weekday, hours in enumerate(grid)
    ]
    reporter.table(
        "Commits heatmap (weekday x hour, UTC)",
        ["Weekday/Hour"] + [str(hour) for hour in range(HOURS_PER_DAY)],
        rows,
    )


REPORT_CHOICES = ["authors", "months", "weekdays", "hours", "heatmap", "all"]


def selected_reports(report: str) -> List[str]:
    if report == "all":
        return REPORT_CHOICES[:-1]
    return [report]


def aggregate_reports(commits: List[CommitDetail], reports: List[str]) -> Dict[str, GroupedStats]:
    """Run each requested aggregation once, keyed by report name"""
    aggregations = {
        "authors": commits_per_author,
        "months": commits_per_month,
        "weekdays": commits_per_weekday,
        "hours": commits_per_day_hour,
        "heatmap": commits_heatmap,
    }
    return {name: aggregations[name](commits) for name in reports}


def build_report(
    commits: List[CommitDetail],
    reports: List[str],
    sort_by: SortStatsBy = SortStatsBy.COMMITS,
    grouped: Optional[Dict[str, GroupedStats]] = None,
) -> Dict[str, Any]:
    """
    Return a JSON-serializable document for the requested reports.

    ``grouped`` takes results already produced by ``aggregate_reports``;
    missing ones are computed here.
    """
    grouped = dict(grouped or {})
    missing = [name for name in reports if name not in grouped]
    grouped.update(aggregate_reports(commits, missing))

    document: Dict[str, Any] = {
        "schema_version": SCHEMA_VERSION,
        "total_commits": len(commits),
    }

    if "authors" in reports:
        document["authors"] = [row.to_dict() for row in grouped["authors"].global_stats(sort_by)]

    for name in ["months", "weekdays", "hours"]:
        if name in reports:
            bucketed = grouped[name]
            totals = bucketed.global_stats()
            document[name] = {
                "totals": {
                    bucketed.bucket_label(key): totals[key].to_dict() for key in sorted(totals)
                },
                "by_author": bucketed.to_dict(),
            }

    if "heatmap" in reports:
        heatmap = grouped["heatmap"]
        document["heatmap"] = {
            "totals": [[cell.commits_count for cell in hours] for hours in heatmap.global_stats()],
            "by_author": {
                str(author): [[cell.commits_count for cell in hours] for hours in matrix]
                for author, matrix in heatmap.items()
            },
        }

    return document


# ============================================================================
# CLI INTERFACE
# ============================================================================


def _date_to_timestamp(value: Optional[Any]) -> Optional[int]:
    """click.DateTime values and config dates (YYYY-MM-DD) to UTC epoch seconds"""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.strptime(value, "%Y-%m-%d")
        except ValueError as e:
            raise CommitArgsError(f"invalid date {value!r}, expected YYYY-MM-DD") from e
    elif isinstance(value, date) and not isinstance(value, datetime):
        # PyYAML loads unquoted dates as datetime.date
        value = datetime(value.year, value.month, value.day)
    return int(value.replace(tzinfo=timezone.utc).timestamp())


def build_commit_args(resolver: ConfigResolver, now: Optional[datetime] = None) -> CommitArgs:
    """Turn resolved settings into a validated CommitArgs"""
    builder = CommitArgs.builder()

    since = _date_to_timestamp(resolver.get("since"))
    months = resolver.get("months")
    if since is None and months:
        now = now or datetime.now(timezone.utc)
        since = int(add_months(now, -int(months)).timestamp())
    if since is not None:
        builder.since(since)

    until = _date_to_timestamp(resolver.get("until"))
    if until is not None:
        builder.until(until)

    author = resolver.get("author")
    if author:
        builder.author(Author.from_text(author))

    exclude_author = resolver.get("exclude_author")
    if exclude_author:
        builder.exclude_author(exclude_author)

    branch = resolver.get("branch")
    if branch:
        builder.target_branch(branch)

    builder.exclude_merges(bool(resolver.get("exclude_merges", False)))
    return builder.build()


@click.command(context_settings=dict(help_option_names=["-h", "--help"]))
@click.argument(
    "repo_path",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
)
@click.option("--since", type=click.DateTime(formats=["%Y-%m-%d"]), help="Only commits after this date")
@click.option("--until", type=click.DateTime(formats=["%Y-%m-%d"]), help="Only commits before this date")
@click.option("--branch", help="Branch to analyze (default: all refs)")
@click.option("--author", help='Only commits by this author ("Name <email>")')
@click.option("--exclude-author", help="Skip commits whose author matches this pattern")
@click.option("--no-merges", "exclude_merges", is_flag=True, default=None, help="Skip merge commits")
@click.option("--report", type=click.Choice(REPORT_CHOICES), help="Which report to produce (default: authors)")
@click.option(
    "--sort-by",
    type=click.Choice([choice.value for choice in SortStatsBy]),
    help="Sort key for the author report (default: commits)",
)
@click.option("--format", "output_format", type=click.Choice(["table", "json"]), help="Output format")
@click.option("-o", "--output", type=click.Path(dir_okay=False), help="Write the JSON report to this file")
@click.option("--workers", type=click.IntRange(min=1), help="Parallel git extraction workers")
@click.option("--fetch", is_flag=True, default=None, help="Run git fetch --all first")
@click.option(
    "--config",
    type=click.Path(exists=True, dir_okay=False),
    help="Configuration file path (.yaml or .json)",
)
@click.option("--preset", type=click.Choice(list(PRESETS)), help="Use a predefined filter")
@click.option("-q", "--quiet", is_flag=True, default=None, help="Suppress progress output")
@click.option("-v", "--verbose", is_flag=True, default=None, help="Show detailed progress information")
@click.option("--no-color", is_flag=True, default=None, help="Disable colored output")
@click.option("--dry-run", is_flag=True, default=None, help="Show the resolved filter without running git")
@click.version_option(version=VERSION)
def main(repo_path, config, preset, **kwargs):
    """
    Commit Statistics Analyzer

    Summarizes the commit history of REPO_PATH per author, month,
    weekday, hour of day, and as a weekday x hour heatmap.
    """
    just_fix_windows_console()

    try:
        resolver = ConfigResolver(kwargs, config, preset, repo_path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        ProgressReporter(use_colors=not kwargs.get("no_color")).error(f"Invalid configuration: {e}")
        sys.exit(1)

    output_format = resolver.get("output_format", "table")
    # stdout carries only the JSON document in json mode
    quiet = resolver.get("quiet", False) or output_format == "json"
    verbose = resolver.get("verbose", False)
    reporter = ProgressReporter(
        quiet=quiet, verbose=verbose, use_colors=not resolver.get("no_color", False)
    )

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    report = resolver.get("report", "authors")
    output = resolver.get("output")
    workers = resolver.get("workers")

    try:
        sort_by = SortStatsBy(resolver.get("sort_by", SortStatsBy.COMMITS.value))
        args = build_commit_args(resolver)
    except (CommitStatsError, ValueError) as e:
        reporter.error(str(e))
        sys.exit(1)

    if resolver.config_path:
        reporter.info(f"Configuration: {resolver.config_path}")

    if resolver.get("dry_run", False):
        reporter.info("DRY RUN MODE - git will not be run")
        reporter.info(f"Repository: {repo_path}")
        reporter.info(f"Filter: {str(args) or 'none'}")
        reporter.info(f"git log {' '.join(args.to_git_args())} --reverse")
        reporter.info(f"Reports: {', '.join(selected_reports(report))}")
        return

    repo = Repo(repo_path)
    try:
        repo.git_dir()
    except GitCommandError as e:
        reporter.error(f"Not a git repository: {repo_path}")
        logger.debug("rev-parse failed: %s", e)
        sys.exit(1)

    try:
        if resolver.get("fetch", False):
            reporter.stage_start("Fetch", "git fetch --all")
            repo.fetch_all()
            reporter.stage_complete("Fetch")

        reporter.stage_start("Listing commits", str(args) or "all commits")
        hashes = repo.list_commits(args)
        reporter.stage_complete("Listing commits", {"Commits": f"{len(hashes):,}"})

        reporter.stage_start("Extracting stats")
        progress_bar = reporter.create_progress_bar(total=len(hashes))
        try:
            commits = repo.commits_stats(
                hashes,
                max_workers=workers,
                progress=progress_bar.update if progress_bar else None,
            )
        finally:
            if progress_bar:
                progress_bar.close()
        reporter.stage_complete("Extracting stats")
    except CommitStatsError as e:
        reporter.error(f"Analysis failed: {e}")
        if verbose:
            logger.exception("analysis failed")
        sys.exit(1)

    if not commits:
        reporter.warning("No commits matched the filter")

    reports = selected_reports(report)
    grouped = aggregate_reports(commits, reports)
    document = build_report(commits, reports, sort_by, grouped)
    document["repository"] = repo_path
    document["filter"] = str(args)
    document["generated_at"] = datetime.now(timezone.utc).isoformat()

    if output_format == "json":
        click.echo(json.dumps(document, indent=2, ensure_ascii=False))
    else:
        if "authors" in reports:
            render_authors(reporter, grouped["authors"], sort_by)
        if "months" in reports:
            render_buckets(reporter, "Commits per month", "Month", grouped["months"])
        if "weekdays" in reports:
            render_buckets(reporter, "Commits per weekday (UTC)", "Weekday", grouped["weekdays"])
        if "hours" in reports:
            render_buckets(reporter, "Commits per hour (UTC)", "Hour", grouped["hours"])
        if "heatmap" in reports:
            render_heatmap(reporter, grouped["heatmap"])

    if output:
        output_dir = os.path.dirname(os.path.abspath(output))
        os.makedirs(output_dir, exist_ok=True)
        with open(output, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, ensure_ascii=False)
        reporter.info(f"Report written to {output}")

    reporter.summary(
        {
            "Repository": repo_path,
            "Total commits": f"{len(commits):,}",
            "Authors": len(IdentityResolver.from_commits(commits)),
        }
    )


if __name__ == "__main__":
    main()
