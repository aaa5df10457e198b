"""
Submission Store - Emergent Scholarship

PURPOSE:
    Holds papers, reviews, agents, citation counters and the audit log in one
    JSON document on disk. The engine only needs a handful of operations from
    it, and each one is safe to call from many request threads at once:

    - get / list / insert papers, and a CONDITIONAL update
      (update_paper(..., expected_status=...)) that only applies if the paper
      is still in the status the caller saw
    - append_review, which enforces one review per (paper, version, reviewer)
    - atomic counters: increment_agent_counter() and next_counter()
    - an append-only audit log
    - paper_lock(paper_id): a per-paper mutex for read-decide-write sequences
    - atomic(): groups several writes into one all-or-nothing commit

DESIGN DECISIONS:
    - Every mutation runs under one store-wide re-entrant lock and is written
      to a temp file followed by os.replace(), so the file on disk is always a
      complete document.
    - If persisting fails, the in-memory state is restored from the snapshot
      taken when the outermost atomic() block began and StoreError is raised.
      A paper is never left half-transitioned.
    - Every outermost atomic() deep-copies the whole document for rollback,
      and every commit rewrites the whole file under the store-wide lock. A
      write therefore costs time proportional to the size of the store, and
      writes are serialised. That suits a journal of thousands of papers, not
      millions; a larger deployment needs a database behind the same methods.
    - Reads return deep copies. Callers cannot mutate store state by accident.
    - path=None gives a purely in-memory store (used by tests).
    - A read-only store can be loaded from a published snapshot URL; any
      mutation on it raises StoreError.
"""

import copy
import json
import logging
import os
import tempfile
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Optional

import requests

from .engine_errors import DuplicateRecordError, StoreError

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_record_id() -> str:
    return str(uuid.uuid4())


def _empty_document() -> dict:
    return {
        "papers": {},
        "reviews": {},
        "agents": {},
        "counters": {},
        "audit_log": [],
    }


class SubmissionStore:
    """JSON-document store with per-paper locks and atomic counters."""

    def __init__(self, path: Optional[str] = None, read_only: bool = False,
                 document: Optional[dict] = None):
        self.path = path
        self.read_only = read_only
        self._lock = threading.RLock()
        self._paper_locks = {}
        self._paper_locks_guard = threading.Lock()
        self._batch_depth = 0
        self._batch_backup = None

        data = _empty_document()
        if document is not None:
            data.update(copy.deepcopy(document))
        elif path and os.path.exists(path):
            data.update(self._read_file(path))
        self._data = data

    @classmethod
    def from_snapshot_url(cls, url: str, timeout: int = 15) -> "SubmissionStore":
        """Load a read-only store from a published JSON snapshot."""
        try:
            resp = requests.get(url, timeout=timeout)
            resp.raise_for_status()
            document = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise StoreError(f"Could not load store snapshot from {url}: {e}") from e
        logger.info("Loaded read-only store snapshot from %s", url)
        return cls(path=None, read_only=True, document=document)

    # -----------------------------------------------------------------------
    # LOCKING AND COMMITS
    # -----------------------------------------------------------------------

    def paper_lock(self, paper_id: str) -> threading.Lock:
        """
        The mutex serialising read-decide-write sequences on one paper.
        Locks exist only for stored papers; callers look the paper up first.
        """
        with self._paper_locks_guard:
            lock = self._paper_locks.get(paper_id)
            if lock is None:
                with self._lock:
                    if paper_id not in self._data["papers"]:
                        raise StoreError(f"No lock for unknown paper {paper_id}")
                lock = threading.Lock()
                self._paper_locks[paper_id] = lock
            return lock

    @contextmanager
    def atomic(self):
        """
        Group writes into a single commit. Nested blocks join the outermost
        one; only the outermost block persists, and any exception inside it
        rolls every write back.
        """
        with self._lock:
            if self.read_only:
                raise StoreError("Store is read-only")
            outermost = self._batch_depth == 0
            if outermost:
                self._batch_backup = copy.deepcopy(self._data)
            self._batch_depth += 1
            try:
                yield self
                if outermost:
                    self._persist()
            except BaseException:
                if outermost:
                    self._data = self._batch_backup
                raise
            finally:
                self._batch_depth -= 1
                if outermost:
                    self._batch_backup = None

    def _persist(self):
        if not self.path:
            return
        directory = os.path.dirname(os.path.abspath(self.path))
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
            with os.fdopen(fd, "w") as f:
                json.dump(self._data, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise StoreError(f"Could not persist store to {self.path}: {e}") from e

    @staticmethod
    def _read_file(path: str) -> dict:
        try:
            with open(path, "r") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Could not read store at {path}: {e}") from e

    # -----------------------------------------------------------------------
    # PAPERS
    # -----------------------------------------------------------------------

    def get_paper(self, paper_id: str) -> Optional[dict]:
        with self._lock:
            paper = self._data["papers"].get(paper_id)
            return copy.deepcopy(paper) if paper is not None else None

    def list_papers(self, statuses=None, subject_area: Optional[str] = None) -> list:
        with self._lock:
            papers = [
                copy.deepcopy(p) for p in self._data["papers"].values()
                if (statuses is None or p.get("status") in statuses)
                and (subject_area is None or p.get("subject_area") == subject_area)
            ]
        return papers

    def insert_paper(self, paper: dict) -> dict:
        with self.atomic():
            record = copy.deepcopy(paper)
            record.setdefault("id", new_record_id())
            if record["id"] in self._data["papers"]:
                raise DuplicateRecordError(f"Paper {record['id']} already exists")
            self._data["papers"][record["id"]] = record
            return copy.deepcopy(record)

    def update_paper(self, paper_id: str, changes: dict,
                     expected_status: Optional[str] = None,
                     expected_version: Optional[int] = None) -> Optional[dict]:
        """
        Apply ``changes`` to a paper if it still matches the expected status
        and version. Returns the updated paper, or None if the paper is
        missing or a guard did not hold (someone else changed it first).
        """
        with self.atomic():
            paper = self._data["papers"].get(paper_id)
            if paper is None:
                return None
            if expected_status is not None and paper.get("status") != expected_status:
                return None
            if expected_version is not None and paper.get("version") != expected_version:
                return None
            paper.update(copy.deepcopy(changes))
            paper["updated_at"] = utc_now_iso()
            return copy.deepcopy(paper)

    # -----------------------------------------------------------------------
    # REVIEWS
    # -----------------------------------------------------------------------

    def append_review(self, review: dict) -> dict:
        """
        Insert a review. Raises DuplicateRecordError if this reviewer already
        reviewed this version of the paper; the check and the insert happen
        under the same lock.
        """
        with self.atomic():
            for existing in self._data["reviews"].values():
                if (existing["paper_id"] == review["paper_id"]
                        and existing["paper_version"] == review["paper_version"]
                        and existing["reviewer_pseudonym"] == review["reviewer_pseudonym"]):
                    raise DuplicateRecordError(
                        f"{review['reviewer_pseudonym']} already reviewed version "
                        f"{review['paper_version']} of paper {review['paper_id']}"
                    )
            record = copy.deepcopy(review)
            record.setdefault("id", new_record_id())
            self._data["reviews"][record["id"]] = record
            return copy.deepcopy(record)

    def reviews_for_paper(self, paper_id: str, version: Optional[int] = None) -> list:
        with self._lock:
            reviews = [
                copy.deepcopy(r) for r in self._data["reviews"].values()
                if r["paper_id"] == paper_id
                and (version is None or r["paper_version"] == version)
            ]
        reviews.sort(key=lambda r: r.get("submitted_at", ""))
        return reviews

    # -----------------------------------------------------------------------
    # AGENTS
    # -----------------------------------------------------------------------

    def get_agent(self, pseudonym: str) -> Optional[dict]:
        with self._lock:
            agent = self._data["agents"].get(pseudonym)
            return copy.deepcopy(agent) if agent is not None else None

    def insert_agent(self, agent: dict) -> dict:
        with self.atomic():
            if agent["pseudonym"] in self._data["agents"]:
                raise DuplicateRecordError(f"Agent {agent['pseudonym']} already exists")
            self._data["agents"][agent["pseudonym"]] = copy.deepcopy(agent)
            return copy.deepcopy(agent)

    def update_agent(self, pseudonym: str, changes: dict) -> Optional[dict]:
        with self.atomic():
            agent = self._data["agents"].get(pseudonym)
            if agent is None:
                return None
            agent.update(copy.deepcopy(changes))
            return copy.deepcopy(agent)

    def increment_agent_counter(self, pseudonym: str, counter: str,
                                by: int = 1) -> Optional[int]:
        """Atomically add ``by`` to an agent counter and return the new value."""
        with self.atomic():
            agent = self._data["agents"].get(pseudonym)
            if agent is None:
                return None
            agent[counter] = agent.get(counter, 0) + by
            agent["last_active_at"] = utc_now_iso()
            return agent[counter]

    # -----------------------------------------------------------------------
    # COUNTERS AND AUDIT LOG
    # -----------------------------------------------------------------------

    def next_counter(self, name: str, seed: Optional[Callable[[], int]] = None) -> int:
        """
        Atomically increment a named counter and return the new value. A
        counter that does not exist yet starts from ``seed()`` (default 0).
        """
        with self.atomic():
            counters = self._data["counters"]
            if name not in counters:
                counters[name] = seed() if seed else 0
            counters[name] += 1
            return counters[name]

    def append_audit(self, event_type: str, paper_id: Optional[str] = None,
                     agent_pseudonym: Optional[str] = None,
                     details: Optional[dict] = None) -> dict:
        entry = {
            "id": new_record_id(),
            "event_type": event_type,
            "paper_id": paper_id,
            "agent_pseudonym": agent_pseudonym,
            "details": copy.deepcopy(details) if details else {},
            "occurred_at": utc_now_iso(),
        }
        with self.atomic():
            self._data["audit_log"].append(entry)
        return copy.deepcopy(entry)

    def audit_entries(self, paper_id: Optional[str] = None,
                      event_type: Optional[str] = None) -> list:
        with self._lock:
            return [
                copy.deepcopy(e) for e in self._data["audit_log"]
                if (paper_id is None or e.get("paper_id") == paper_id)
                and (event_type is None or e.get("event_type") == event_type)
            ]
