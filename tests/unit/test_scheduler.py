from __future__ import annotations

import os
import threading
import time
from pathlib import Path

import pytest

from junkwatch.classifier import LearnError, MailClassifier
from junkwatch.config import read_learn_interval
from junkwatch.maildir import MaildirError, good_dir, junk_dir
from junkwatch.scheduler import LearningCycleError, LearningScheduler
from junkwatch.store import BACKUP_FILENAME, Store, StoreError
from junkwatch.types import Mailbox
from tests.conftest import write_message


class FakeStore:
    def __init__(self, name: str, ledger: list[tuple[str, str]], *, fail_backup: bool = False):
        self.name = name
        self.ledger = ledger
        self.fail_backup = fail_backup
        self.flushes = 0

    def write_snapshot(self, destination: Path) -> Path:
        self.ledger.append(("backup", self.name))
        if self.fail_backup:
            raise StoreError("disk full")
        return destination

    def flush(self) -> bool:
        self.flushes += 1
        return True


class FakeLearner:
    def __init__(self, ledger: list[tuple[str, str]], *, failing: set[str] | None = None):
        self.ledger = ledger
        self.failing = failing or set()
        self.seen: set[str] = set()

    def learn(self, store, mailbox, key) -> bool:
        self.ledger.append(("learn", f"{store.name}:{key}"))
        if key in self.failing:
            raise LearnError(f"unreadable {key}")
        if key in self.seen:
            return False
        self.seen.add(key)
        return True


@pytest.fixture
def setup(tmp_path: Path):
    ledger: list[tuple[str, str]] = []
    a, b = Mailbox(tmp_path / "A"), Mailbox(tmp_path / "B")
    handles = {a: FakeStore("A", ledger), b: FakeStore("B", ledger)}
    listing = {a: ["cur/a1", ".Junk/cur/a2"], b: ["cur/b1"]}
    return ledger, a, b, handles, listing


def _enumerator(listing):
    def enumerate_messages(mailboxes):
        return {mailbox: list(listing[mailbox]) for mailbox in mailboxes}

    return enumerate_messages


def test_cycle_backs_up_each_mailbox_before_learning_it(setup) -> None:
    ledger, a, b, handles, listing = setup
    learner = FakeLearner(ledger)
    scheduler = LearningScheduler(
        [a, b],
        handles,
        learner,
        interval_source=lambda: "1h",
        enumerate_messages=_enumerator(listing),
    )

    report = scheduler.run_cycle()

    assert ledger == [
        ("backup", "A"),
        ("learn", "A:cur/a1"),
        ("learn", "A:.Junk/cur/a2"),
        ("backup", "B"),
        ("learn", "B:cur/b1"),
    ]
    assert report.processed == [a, b]
    assert report.learned == 3
    assert report.since_previous is None
    assert handles[a].flushes == 1
    assert handles[b].flushes == 1
    assert scheduler.last_report is report

    second = scheduler.run_cycle()
    assert second.learned == 0
    assert second.skipped == 3
    assert second.since_previous is not None


def test_backup_is_written_inside_the_mailbox(make_mailbox) -> None:
    mailbox = make_mailbox("A")
    with Store(mailbox.path) as store:
        scheduler = LearningScheduler(
            [mailbox],
            {mailbox: store},
            FakeLearner([]),
            interval_source=lambda: "1h",
            enumerate_messages=lambda boxes: {box: [] for box in boxes},
        )
        report = scheduler.run_cycle()

    assert report.backup_failures == {}
    assert (mailbox.path / BACKUP_FILENAME).is_file()


def test_learn_failure_is_logged_and_skipped(setup, caplog) -> None:
    ledger, a, b, handles, listing = setup
    learner = FakeLearner(ledger, failing={"cur/a1"})
    scheduler = LearningScheduler(
        [a, b],
        handles,
        learner,
        interval_source=lambda: "1h",
        enumerate_messages=_enumerator(listing),
    )

    report = scheduler.run_cycle()

    assert report.learn_failures == {a: ["cur/a1"]}
    assert report.learned == 2
    assert "Cannot learn mail cur/a1" in caplog.text


def test_backup_failure_still_learns(setup, caplog) -> None:
    ledger, a, b, handles, listing = setup
    handles[a].fail_backup = True
    scheduler = LearningScheduler(
        [a, b],
        handles,
        FakeLearner(ledger),
        interval_source=lambda: "1h",
        enumerate_messages=_enumerator(listing),
    )

    report = scheduler.run_cycle()

    assert list(report.backup_failures) == [a]
    assert ("learn", "A:cur/a1") in ledger
    assert report.processed == [a, b]
    assert "Backup creation failed" in caplog.text


def test_enumeration_failure_is_fatal(setup) -> None:
    ledger, a, b, handles, _listing = setup

    def broken(mailboxes):
        raise MaildirError("Cannot list folder")

    scheduler = LearningScheduler(
        [a, b],
        handles,
        FakeLearner(ledger),
        interval_source=lambda: "1h",
        enumerate_messages=broken,
    )

    with pytest.raises(LearningCycleError, match="Cannot load mails"):
        scheduler.run_cycle()
    assert ledger == [("backup", "A")]


@pytest.mark.timeout(10)
def test_background_loop_reports_fatal_errors(setup) -> None:
    ledger, a, b, handles, _listing = setup
    fatal: list[BaseException] = []
    done = threading.Event()

    def on_fatal(error: BaseException) -> None:
        fatal.append(error)
        done.set()

    def broken(mailboxes):
        raise MaildirError("gone")

    scheduler = LearningScheduler(
        [a, b],
        handles,
        FakeLearner(ledger),
        interval_source=lambda: "1h",
        on_fatal=on_fatal,
        enumerate_messages=broken,
    )
    scheduler.start()
    try:
        assert done.wait(5)
    finally:
        scheduler.stop(timeout=5)

    assert isinstance(fatal[0], LearningCycleError)


@pytest.mark.timeout(10)
def test_invalid_interval_is_fatal_before_any_work(setup) -> None:
    ledger, a, b, handles, listing = setup
    done = threading.Event()
    fatal: list[BaseException] = []

    def on_fatal(error: BaseException) -> None:
        fatal.append(error)
        done.set()

    scheduler = LearningScheduler(
        [a, b],
        handles,
        FakeLearner(ledger),
        interval_source=lambda: "every day",
        on_fatal=on_fatal,
        enumerate_messages=_enumerator(listing),
    )
    scheduler.start()
    try:
        assert done.wait(5)
    finally:
        scheduler.stop(timeout=5)

    assert "Cannot parse duration" in str(fatal[0])
    assert ledger == []


@pytest.mark.timeout(10)
def test_interval_is_reread_before_every_cycle(setup) -> None:
    ledger, a, b, handles, listing = setup
    intervals = iter(["10ms", "20ms", "1h"])
    reads: list[str] = []
    third_read = threading.Event()

    def interval_source() -> str:
        value = next(intervals)
        reads.append(value)
        if len(reads) == 3:
            third_read.set()
        return value

    scheduler = LearningScheduler(
        [a, b],
        handles,
        FakeLearner(ledger),
        interval_source=interval_source,
        enumerate_messages=_enumerator(listing),
    )
    scheduler.start()
    try:
        assert third_read.wait(5)
    finally:
        scheduler.stop(timeout=5)

    assert reads == ["10ms", "20ms", "1h"]
    assert scheduler.is_running is False
    assert ledger.count(("backup", "A")) >= 2


def test_read_interval_converts_config_errors(setup) -> None:
    _ledger, a, b, handles, _listing = setup
    scheduler = LearningScheduler([a, b], handles, FakeLearner([]), interval_source=lambda: "0s")

    with pytest.raises(LearningCycleError):
        scheduler.read_interval()


def test_malformed_message_does_not_block_the_cycle(make_mailbox) -> None:
    mailbox = make_mailbox("A")
    (good_dir(mailbox) / "a-bad:2,S").write_bytes(b"To: :\nFrom: <\n\nbody\n")
    write_message(good_dir(mailbox) / "b-good:2,S", subject="Agenda")
    write_message(junk_dir(mailbox) / "c-spam:2,", subject="Winner")

    with Store(mailbox.path) as store:
        scheduler = LearningScheduler(
            [mailbox],
            {mailbox: store},
            MailClassifier(),
            interval_source=lambda: "1h",
        )
        report = scheduler.run_cycle()
        stats = store.stats()

    assert report.learn_failures == {mailbox: ["cur/a-bad:2,S"]}
    assert report.learned == 2
    assert (stats.good_count, stats.junk_count) == (1, 1)


@pytest.mark.timeout(10)
def test_unexpected_error_in_background_loop_is_reported(setup, caplog) -> None:
    ledger, a, b, handles, listing = setup
    fatal: list[BaseException] = []
    done = threading.Event()

    class CrashingLearner:
        def learn(self, store, mailbox, key):
            raise IndexError("string index out of range")

    def on_fatal(error: BaseException) -> None:
        fatal.append(error)
        done.set()

    scheduler = LearningScheduler(
        [a, b],
        handles,
        CrashingLearner(),
        interval_source=lambda: "1h",
        on_fatal=on_fatal,
        enumerate_messages=_enumerator(listing),
    )
    scheduler.start()
    try:
        assert done.wait(5)
    finally:
        scheduler.stop(timeout=5)

    assert isinstance(fatal[0], IndexError)
    assert "Learning task failed" in caplog.text


@pytest.mark.timeout(10)
def test_unrelated_config_edit_keeps_learning(setup, tmp_path: Path) -> None:
    ledger, a, b, handles, listing = setup
    config_path = tmp_path / "config.yaml"
    config_path.write_text(f"maildirs:\n  - {a.path}\nlearn_interval: 20ms\n", encoding="utf-8")
    fatal: list[BaseException] = []

    scheduler = LearningScheduler(
        [a, b],
        handles,
        FakeLearner(ledger),
        interval_source=lambda: read_learn_interval(config_path),
        on_fatal=fatal.append,
        enumerate_messages=_enumerator(listing),
    )
    scheduler.start()
    try:
        assert _wait_for_cycles(ledger, 1)
        edited = tmp_path / "config.yaml.new"
        edited.write_text(
            f"maildirs:\n  - {a.path}\nlearn_interval: 20ms\njunk_threshold: 1.5\n",
            encoding="utf-8",
        )
        os.replace(edited, config_path)
        cycles = ledger.count(("backup", "A"))
        assert _wait_for_cycles(ledger, cycles + 2)
        assert scheduler.is_running is True
    finally:
        scheduler.stop(timeout=5)

    assert fatal == []


def _wait_for_cycles(ledger: list[tuple[str, str]], count: int, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if ledger.count(("backup", "A")) >= count:
            return True
        time.sleep(0.01)
    return False
