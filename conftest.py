import os
import subprocess
from datetime import datetime, timezone

import pytest

from commitstats import Author, CommitDetail, CommitHash, CommitStats, ProgressReporter


def utc_ts(year, month, day, hour=0, minute=0):
    return int(datetime(year, month, day, hour, minute, tzinfo=timezone.utc).timestamp())


@pytest.fixture
def quiet_reporter():
    return ProgressReporter(quiet=True, use_colors=False)


@pytest.fixture
def make_commit():
    """Factory for CommitDetail values; timestamps are (y, m, d, h) in UTC."""
    counter = {"n": 0}

    def _make(name, email=None, when=(2024, 1, 1, 12), files=1, added=0, deleted=0):
        counter["n"] += 1
        return CommitDetail(
            hash=CommitHash(f"{counter['n']:040x}"),
            author=Author(name, email),
            author_timestamp=utc_ts(*when),
            stats=CommitStats(files_changed=files, lines_added=added, lines_deleted=deleted),
            subject=f"commit {counter['n']}",
        )

    return _make


@pytest.fixture
def sample_commits(make_commit):
    """Two commits by Jane Doe, one by John Doe."""
    return [
        make_commit("Jane Doe", "jane@example.com", (2024, 3, 4, 9), files=1, added=10, deleted=2),
        make_commit("John Doe", "john@example.com", (2024, 3, 5, 14), files=1, added=1, deleted=0),
        make_commit("Jane Doe", "jane@example.com", (2024, 3, 9, 23), files=2, added=5, deleted=1),
    ]


# (author name, email, UTC datetime, files to write)
GIT_HISTORY = [
    ("Alice", "alice@example.com", datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc),
     {"a.txt": "one\ntwo\nthree\n"}),
    ("Bob", "bob@example.com", datetime(2024, 2, 20, 14, 30, tzinfo=timezone.utc),
     {"b.txt": "first\nsecond\n"}),
    ("alice", "ALICE@example.com", datetime(2024, 3, 10, 9, 0, tzinfo=timezone.utc),
     {"a.txt": "one\n2\nthree\n"}),
    ("Bob", "bob@example.com", datetime(2024, 4, 15, 22, 0, tzinfo=timezone.utc),
     {"b.txt": "first\n", "c.txt": "new\n"}),
]


@pytest.fixture
def git_repo(tmp_path):
    repo = tmp_path / "repo"
    repo.mkdir()

    def run(*args, env=None):
        subprocess.run(
            ["git", "-C", str(repo)] + list(args),
            check=True,
            capture_output=True,
            env={**os.environ, **(env or {})},
        )

    run("init")
    run("symbolic-ref", "HEAD", "refs/heads/main")
    run("config", "user.email", "tester@test.com")
    run("config", "user.name", "Tester")
    run("config", "commit.gpgsign", "false")

    for index, (name, email, when, files) in enumerate(GIT_HISTORY):
        for file_name, content in files.items():
            (repo / file_name).write_text(content, encoding="utf-8")
        stamp = f"@{int(when.timestamp())} +0000"
        run("add", ".")
        run(
            "commit",
            "-m",
            f"change {index}",
            env={
                "GIT_AUTHOR_NAME": name,
                "GIT_AUTHOR_EMAIL": email,
                "GIT_AUTHOR_DATE": stamp,
                "GIT_COMMITTER_DATE": stamp,
            },
        )

    return str(repo)
