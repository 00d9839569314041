"""Session persistence for message histories."""

import json
import os
import secrets
from pathlib import Path
from typing import Any

from filelock import FileLock
from loguru import logger

from aicoder.compaction.types import Message

# Give up on a JSONL file with more corrupt lines than this
_MAX_CORRUPT_LINES = 50


def get_sessions_dir() -> Path:
    """Get the default sessions directory."""
    return Path.home() / ".aicoder" / "sessions"


def _lock_for(path: Path) -> FileLock:
    return FileLock(path.with_suffix(path.suffix + ".lock"), timeout=10)


def _parse_messages(raw: Any, path: Path) -> list[Message]:
    if isinstance(raw, dict):
        raw = raw.get("messages", [])
    if not isinstance(raw, list):
        logger.warning(f"Session {path} has no message list, ignoring")
        return []
    return [Message.from_dict(m) for m in raw if isinstance(m, dict) and "role" in m]


def _read_jsonl(path: Path) -> list[Message] | None:
    messages: list[Message] = []
    corrupt_lines = 0

    with open(path, encoding="utf-8") as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                corrupt_lines += 1
                if corrupt_lines <= 3:
                    logger.warning(f"Skipped corrupt line {line_num} in {path}")
                if corrupt_lines > _MAX_CORRUPT_LINES:
                    logger.error(f"Too many corrupt lines in {path}, aborting load")
                    return None
                continue
            if isinstance(data, dict) and "role" in data:
                messages.append(Message.from_dict(data))

    if corrupt_lines:
        logger.warning(f"Session {path}: loaded with {corrupt_lines} corrupt line(s) skipped")
    return messages


def load_session(path: Path) -> list[Message]:
    """
    Load messages from a session file.

    Accepts a JSON array of messages, a `{"messages": [...]}` object, or
    JSONL with one message per line.

    Args:
        path: Session file.

    Returns:
        Loaded messages; empty if the file is missing or unreadable.
    """
    path = Path(path)
    if not path.exists():
        return []

    with _lock_for(path):
        try:
            if path.suffix == ".jsonl":
                return _read_jsonl(path) or []
            text = path.read_text(encoding="utf-8")
            if not text.strip():
                return []
            return _parse_messages(json.loads(text), path)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to load session {path}: {e}")
            return []


def save_session(path: Path, messages: list[Message]) -> None:
    """
    Save messages atomically.

    `.jsonl` paths get one message per line; anything else gets a
    `{"messages": [...]}` JSON document.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp_path = path.with_suffix(f".tmp.{secrets.token_hex(4)}")
    with _lock_for(path):
        try:
            with open(tmp_path, "w", encoding="utf-8", newline="\n") as f:
                if path.suffix == ".jsonl":
                    for msg in messages:
                        f.write(json.dumps(msg.to_dict(), ensure_ascii=False) + "\n")
                else:
                    data = {"messages": [msg.to_dict() for msg in messages]}
                    f.write(json.dumps(data, indent=2, ensure_ascii=False) + "\n")
            os.replace(str(tmp_path), str(path))
        except Exception:
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                pass
            raise

    logger.debug(f"Saved {len(messages)} message(s) to {path}")


def append_message(path: Path, message: Message) -> None:
    """Append one message to a JSONL session file."""
    path = Path(path)
    if path.suffix != ".jsonl":
        raise ValueError(f"append_message requires a .jsonl session file, got {path}")
    path.parent.mkdir(parents=True, exist_ok=True)

    with _lock_for(path):
        with open(path, "a", encoding="utf-8", newline="\n") as f:
            f.write(json.dumps(message.to_dict(), ensure_ascii=False) + "\n")
