"""
Conversation Store - durable, crash-safe persistence of conversation turns.

Each turn is stored as two immutable JSON artifacts inside the conversation
directory:

    request_<turn_id>.json   written before the provider is called
    response_<turn_id>.json  written after the agentic loop for the turn ends

A turn counts as complete only when both files exist. Every write goes to a
temporary file first and is renamed into place, so readers never see a
partially written artifact. Pruning renames pairs to ``*.deleting`` before
removing them; leftover sentinels from an interrupted prune are swept when
the store is opened.
"""

import json
import os
import shutil
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import structlog
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..errors import StorageError
from ..models import (
    AuditLogEntry,
    Message,
    ModelsCache,
    ProviderResponse,
    RequestRecord,
    RunStats,
)

logger = structlog.get_logger()

DELETING_SUFFIX = ".deleting"
TURN_ID_FORMAT = "%Y%m%d_%H%M%S_%f"
LEGACY_TURN_ID_FORMAT = "%Y%m%d_%H%M%S"

CONFIG_FILE = "config.json"
AUDIT_LOG_FILE = "tool_log.jsonl"
MODELS_FILE = "models.json"

_responses_adapter = TypeAdapter(list[ProviderResponse])


def current_timestamp() -> str:
    """Current time in the turn id format."""
    return datetime.now().strftime(TURN_ID_FORMAT)


def _parse_turn_id(turn_id: str) -> datetime | None:
    for fmt in (TURN_ID_FORMAT, LEGACY_TURN_ID_FORMAT):
        try:
            return datetime.strptime(turn_id, fmt)
        except ValueError:
            continue
    return None


def write_json_atomic(path: Path, data: Any) -> None:
    """Write JSON to ``path`` via a temp file and rename.

    Raises StorageError if any step fails; the temp file is removed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except (OSError, TypeError, ValueError) as e:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise StorageError(f"atomic write {path.name}: {e}") from e


class ConversationStore:
    """Owns every on-disk artifact of one conversation directory."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self.cleanup_sentinels()

    # -- paths ---------------------------------------------------------------

    def request_path(self, turn_id: str) -> Path:
        return self.directory / f"request_{turn_id}.json"

    def response_path(self, turn_id: str) -> Path:
        return self.directory / f"response_{turn_id}.json"

    @property
    def audit_log_path(self) -> Path:
        return self.directory / AUDIT_LOG_FILE

    def _entries(self) -> list[str]:
        try:
            return os.listdir(self.directory)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageError(f"reading {self.directory}: {e}") from e

    def _ids_with_prefix(self, prefix: str) -> set[str]:
        ids = set()
        for name in self._entries():
            if name.endswith(DELETING_SUFFIX):
                continue
            if name.startswith(prefix) and name.endswith(".json"):
                ids.add(name[len(prefix):-len(".json")])
        return ids

    # -- turns ---------------------------------------------------------------

    def new_turn_id(self) -> str:
        """Return a turn id strictly greater than any id already on disk."""
        candidate = current_timestamp()
        existing = self._ids_with_prefix("request_") | self._ids_with_prefix("response_")
        if not existing:
            return candidate

        latest = max(existing)
        if candidate > latest:
            return candidate

        parsed = _parse_turn_id(latest)
        if parsed is None:
            logger.warning("Unparseable turn id on disk", turn_id=latest)
            return candidate
        step = timedelta(microseconds=1) if len(latest) > 15 else timedelta(seconds=1)
        return (parsed + step).strftime(TURN_ID_FORMAT)

    def save_request(self, turn_id: str, messages: list[Message]) -> None:
        """Persist the request (history + new user message) for a turn."""
        record = RequestRecord(timestamp=turn_id, messages=messages)
        write_json_atomic(self.request_path(turn_id), record.model_dump(mode="json"))
        logger.debug("Saved request", turn_id=turn_id, messages=len(messages))

    def save_response(self, turn_id: str, responses: list[ProviderResponse]) -> None:
        """Persist all provider replies produced while resolving a turn."""
        data = [r.model_dump(mode="json", exclude_none=True) for r in responses]
        write_json_atomic(self.response_path(turn_id), data)
        logger.debug("Saved response", turn_id=turn_id, iterations=len(responses))

    def load_request(self, turn_id: str) -> RequestRecord:
        path = self.request_path(turn_id)
        try:
            return RequestRecord.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, PydanticValidationError) as e:
            raise StorageError(f"loading request {turn_id}: {e}") from e

    def load_responses(self, turn_id: str) -> list[ProviderResponse]:
        path = self.response_path(turn_id)
        try:
            return _responses_adapter.validate_json(path.read_bytes())
        except (OSError, PydanticValidationError) as e:
            raise StorageError(f"loading response {turn_id}: {e}") from e

    def list_complete_pairs(self) -> list[str]:
        """Turn ids with both a request and a response, oldest first."""
        requests = self._ids_with_prefix("request_")
        responses = self._ids_with_prefix("response_")
        return sorted(requests & responses)

    def latest_orphan(self) -> str | None:
        """Newest request that never got a response (crashed or estimated run)."""
        orphans = self._ids_with_prefix("request_") - self._ids_with_prefix("response_")
        return max(orphans) if orphans else None

    def load_history(self) -> list[Message]:
        """Reconstruct the conversation from complete request/response pairs.

        Each turn contributes its user message and one assistant message
        built from the final response of that turn.
        """
        messages: list[Message] = []

        for turn_id in self.list_complete_pairs():
            try:
                request = self.load_request(turn_id)
                responses = self.load_responses(turn_id)
            except StorageError as e:
                logger.warning("Skipping unreadable turn", turn_id=turn_id, error=str(e))
                continue

            if request.messages:
                messages.append(request.messages[-1])
            if responses:
                messages.append(responses[-1].to_message())

        return messages

    # -- pruning -------------------------------------------------------------

    def cleanup_sentinels(self) -> int:
        """Remove ``*.deleting`` files left over from an interrupted prune."""
        removed = 0
        errors = []
        for name in self._entries():
            if not name.endswith(DELETING_SUFFIX):
                continue
            try:
                (self.directory / name).unlink()
                removed += 1
            except FileNotFoundError:
                pass
            except OSError as e:
                errors.append(f"{name}: {e}")

        if removed:
            logger.info("Removed leftover deletion sentinels", count=removed)
        if errors:
            raise StorageError("cleanup errors: " + "; ".join(errors))
        return removed

    def prune(self, keep_last: int) -> int:
        """Delete all but the newest ``keep_last`` complete pairs.

        Phase 1 renames both files of each doomed pair to ``*.deleting``,
        undoing the request rename if the response rename fails. Phase 2
        removes the sentinels. Per-file failures don't stop the pass; they
        are raised together as one StorageError at the end.

        Returns the number of pairs pruned.
        """
        self.cleanup_sentinels()

        pairs = self.list_complete_pairs()
        if keep_last < 0:
            keep_last = 0
        if len(pairs) <= keep_last:
            logger.info("Nothing to prune", pairs=len(pairs), keep=keep_last)
            return 0

        to_delete = pairs[:len(pairs) - keep_last]
        marked = []
        errors = []

        for turn_id in to_delete:
            req = self.request_path(turn_id)
            resp = self.response_path(turn_id)
            req_sentinel = req.with_name(req.name + DELETING_SUFFIX)
            resp_sentinel = resp.with_name(resp.name + DELETING_SUFFIX)

            try:
                os.rename(req, req_sentinel)
            except OSError as e:
                errors.append(f"request {turn_id}: {e}")
                continue

            try:
                os.rename(resp, resp_sentinel)
            except OSError as e:
                try:
                    os.rename(req_sentinel, req)
                except OSError as rollback_err:
                    errors.append(f"rollback request {turn_id}: {rollback_err}")
                errors.append(f"response {turn_id}: {e}")
                continue

            marked.append((turn_id, req_sentinel, resp_sentinel))

        for turn_id, req_sentinel, resp_sentinel in marked:
            for kind, sentinel in (("request", req_sentinel), ("response", resp_sentinel)):
                try:
                    sentinel.unlink()
                except OSError as e:
                    errors.append(f"{kind} {turn_id}: {e}")
            logger.info("Pruned turn", turn_id=turn_id)

        logger.info("Prune finished", deleted=len(marked), kept=len(pairs) - len(marked))

        if errors:
            raise StorageError("prune completed with errors:\n" + "\n".join(errors))
        return len(marked)

    def reset(self) -> None:
        """Remove the whole conversation directory."""
        try:
            shutil.rmtree(self.directory)
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError(f"removing {self.directory}: {e}") from e
        logger.info("Conversation reset", directory=str(self.directory))

    # -- audit log -----------------------------------------------------------

    def append_audit_log(self, entry: AuditLogEntry) -> None:
        """Append one tool invocation to tool_log.jsonl and fsync it."""
        line = entry.model_dump_json(exclude_none=True) + "\n"
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(self.audit_log_path, "a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise StorageError(f"write audit log: {e}") from e

    def read_audit_log(self) -> list[AuditLogEntry]:
        try:
            lines = self.audit_log_path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageError(f"read audit log: {e}") from e
        return [AuditLogEntry.model_validate_json(line) for line in lines if line.strip()]

    # -- config.json / models.json --------------------------------------------

    def load_stats(self) -> RunStats:
        """Load config.json, or an empty RunStats when missing or unreadable."""
        path = self.directory / CONFIG_FILE
        try:
            return RunStats.model_validate_json(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return RunStats()
        except (OSError, PydanticValidationError) as e:
            logger.warning("Ignoring unreadable config.json", error=str(e))
            return RunStats()

    def save_stats(self, stats: RunStats) -> None:
        write_json_atomic(
            self.directory / CONFIG_FILE,
            stats.model_dump(mode="json", by_alias=True, exclude_none=True),
        )

    def load_models_cache(self) -> ModelsCache | None:
        path = self.directory / MODELS_FILE
        try:
            return ModelsCache.model_validate_json(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, PydanticValidationError) as e:
            logger.warning("Ignoring unreadable models.json", error=str(e))
            return None

    def save_models_cache(self, cache: ModelsCache) -> None:
        write_json_atomic(self.directory / MODELS_FILE, cache.model_dump(mode="json"))
