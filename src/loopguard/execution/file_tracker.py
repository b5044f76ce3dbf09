"""Per-task cache of file reads, directory listings and file creations."""

import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from loopguard.utils.logger import get_logger

logger = get_logger(__name__)

# Bounds for the knowledge summary rendered into prompts
SUMMARY_MAX_READ_FILES = 10
SUMMARY_MAX_CREATED_FILES = 10
SUMMARY_MAX_DIRECTORIES = 5

# Bounds for persisted snapshots
SERIALIZE_MAX_READ_FILES = 50
SERIALIZE_MAX_CREATED_FILES = 50
SERIALIZE_MAX_DIRECTORIES = 20

# Shorter normalized names are too generic for substring matching
MIN_SIMILAR_NAME_LENGTH = 10

DOCUMENT_EXTENSIONS = (".docx", ".pdf")

_EXTENSION = re.compile(r"\.[^.]+$")
_VERSION_SUFFIX = re.compile(r"[_-]v?\d+(\.\d+)?")
_REVISION_WORD = re.compile(r"[_-](updated|final|new|copy|backup|draft|section)")
_SEPARATORS = re.compile(r"[_-]+")


@dataclass
class FileTrackerConfig:
    """Thresholds for redundant reads and listings."""

    max_reads_per_file: int = 2
    read_cooldown_seconds: float = 30.0
    max_listings_per_dir: int = 2
    listing_cooldown_seconds: float = 60.0


@dataclass
class ReadFileRecord:
    count: int
    last_read_time: float
    content_length: int = 0


@dataclass
class DirectoryListingRecord:
    files: List[str]
    last_list_time: float
    count: int


@dataclass
class FileReadCheck:
    blocked: bool
    reason: Optional[str] = None
    suggestion: Optional[str] = None


@dataclass
class DirectoryListingCheck:
    blocked: bool
    reason: Optional[str] = None
    suggestion: Optional[str] = None
    cached_files: Optional[List[str]] = None


@dataclass
class FileCreationCheck:
    is_duplicate: bool
    existing_path: Optional[str] = None
    suggestion: Optional[str] = None


@dataclass
class FileOperationStats:
    total_reads: int = 0
    total_creates: int = 0
    total_listings: int = 0
    unique_files_read: int = 0
    files_created: int = 0
    dirs_listed: int = 0


@dataclass
class FileTrackerSnapshot:
    """Identity-only snapshot; timing is session-specific and never persisted."""

    read_files: List[str] = field(default_factory=list)
    created_files: List[str] = field(default_factory=list)
    directories: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "readFiles": list(self.read_files),
            "createdFiles": list(self.created_files),
            "directories": list(self.directories),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileTrackerSnapshot":
        return cls(
            read_files=list(data.get("readFiles") or data.get("read_files") or []),
            created_files=list(
                data.get("createdFiles") or data.get("created_files") or []
            ),
            directories=list(data.get("directories") or []),
        )


def normalize_path(file_path: str) -> str:
    """Case-fold a path and unify separators for comparison."""
    return file_path.lower().replace("\\", "/")


def _basename(file_path: str) -> str:
    return file_path.split("/")[-1] or file_path


def normalize_filename(filename: str) -> str:
    """
    Reduce a filename to its identity for near-duplicate detection.

    Strips any directory part, the extension, version suffixes (``_v2``,
    ``-1.3``) and revision words (``_final``, ``-draft``, ...), then collapses
    runs of separators. ``Report_v2_Final.docx`` becomes ``report``.
    """
    name = _basename(filename).lower()
    name = _EXTENSION.sub("", name)
    name = _VERSION_SUFFIX.sub("", name)
    name = _REVISION_WORD.sub("", name)
    name = _SEPARATORS.sub("_", name)
    return name.strip()


def are_similar_filenames(name1: str, name2: str) -> bool:
    """Compare two normalized names; a long enough prefix-like name counts as similar."""
    if name1 == name2:
        return True
    shorter, longer = (name1, name2) if len(name1) < len(name2) else (name2, name1)
    return len(shorter) >= MIN_SIMILAR_NAME_LENGTH and shorter in longer


class FileOperationTracker:
    """
    Tracks what an agent already knows about the filesystem within a task.

    Reads and listings are blocked once they hit their count threshold inside
    the cooldown window. Creations have no window: a near-duplicate of a file
    created earlier in the session is always flagged. All ``record_*``
    methods are unconditional bookkeeping.
    """

    def __init__(
        self,
        config: Optional[FileTrackerConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config or FileTrackerConfig()
        self._clock = clock or time.time
        self._read_files: Dict[str, ReadFileRecord] = {}
        # normalized filename -> full path, in creation order
        self._created_files: Dict[str, str] = {}
        self._directory_listings: Dict[str, DirectoryListingRecord] = {}
        self._operation_counts: Dict[str, int] = {}

    def check_file_read(self, file_path: str) -> FileReadCheck:
        existing = self._read_files.get(normalize_path(file_path))
        if existing is None:
            return FileReadCheck(blocked=False)

        elapsed = self._clock() - existing.last_read_time
        if (
            elapsed < self.config.read_cooldown_seconds
            and existing.count >= self.config.max_reads_per_file
        ):
            logger.info(f"Blocking redundant read of {file_path} ({existing.count} reads)")
            return FileReadCheck(
                blocked=True,
                reason=(
                    f'File "{file_path}" was already read {existing.count} times in '
                    f"the last {self.config.read_cooldown_seconds:g}s"
                ),
                suggestion=(
                    "Use the content from the previous read instead of reading the "
                    "file again. If you need specific parts, describe what you need."
                ),
            )
        return FileReadCheck(blocked=False)

    def record_file_read(self, file_path: str, content_length: int = 0) -> None:
        key = normalize_path(file_path)
        now = self._clock()
        existing = self._read_files.get(key)
        if existing:
            existing.count += 1
            existing.last_read_time = now
            existing.content_length = content_length
        else:
            self._read_files[key] = ReadFileRecord(
                count=1, last_read_time=now, content_length=content_length
            )
        self._increment("read_file")

    def check_directory_listing(self, dir_path: str) -> DirectoryListingCheck:
        existing = self._directory_listings.get(normalize_path(dir_path))
        if existing is None:
            return DirectoryListingCheck(blocked=False)

        elapsed = self._clock() - existing.last_list_time
        if (
            elapsed < self.config.listing_cooldown_seconds
            and existing.count >= self.config.max_listings_per_dir
        ):
            logger.info(
                f"Serving cached listing for {dir_path} ({existing.count} listings)"
            )
            return DirectoryListingCheck(
                blocked=True,
                reason=(
                    f'Directory "{dir_path}" was already listed {existing.count} times '
                    f"in the last {self.config.listing_cooldown_seconds:g}s"
                ),
                suggestion=(
                    "Use the cached directory listing instead of listing again. The "
                    "directory contents are unlikely to have changed."
                ),
                cached_files=list(existing.files),
            )
        return DirectoryListingCheck(blocked=False)

    def record_directory_listing(self, dir_path: str, files: List[str]) -> None:
        key = normalize_path(dir_path)
        now = self._clock()
        existing = self._directory_listings.get(key)
        if existing:
            existing.count += 1
            existing.last_list_time = now
            existing.files = list(files)
        else:
            self._directory_listings[key] = DirectoryListingRecord(
                files=list(files), last_list_time=now, count=1
            )
        self._increment("list_directory")

    def get_cached_directory_listing(self, dir_path: str) -> Optional[List[str]]:
        record = self._directory_listings.get(normalize_path(dir_path))
        return list(record.files) if record else None

    def check_file_creation(self, filename: str) -> FileCreationCheck:
        normalized = normalize_filename(filename)

        existing_path = self._created_files.get(normalized)
        if existing_path:
            return FileCreationCheck(
                is_duplicate=True,
                existing_path=existing_path,
                suggestion=(
                    f'A similar file "{existing_path}" was already created. Consider '
                    f"editing that file instead of creating a new version."
                ),
            )

        for key, path in self._created_files.items():
            if are_similar_filenames(normalized, key):
                return FileCreationCheck(
                    is_duplicate=True,
                    existing_path=path,
                    suggestion=(
                        f'A similar file "{path}" was already created. Avoid creating '
                        f"multiple versions - edit the existing file instead."
                    ),
                )

        return FileCreationCheck(is_duplicate=False)

    def record_file_creation(self, file_path: str) -> None:
        self._created_files[normalize_filename(file_path)] = file_path
        self._increment("create_file")

    def get_created_files(self) -> List[str]:
        return list(self._created_files.values())

    def get_last_created_document(self) -> Optional[str]:
        """First created ``.docx``/``.pdf`` path, used to infer edit targets."""
        for path in self._created_files.values():
            if path.endswith(DOCUMENT_EXTENSIONS):
                return path
        return None

    def get_stats(self) -> FileOperationStats:
        return FileOperationStats(
            total_reads=self._operation_counts.get("read_file", 0),
            total_creates=self._operation_counts.get("create_file", 0),
            total_listings=self._operation_counts.get("list_directory", 0),
            unique_files_read=len(self._read_files),
            files_created=len(self._created_files),
            dirs_listed=len(self._directory_listings),
        )

    def get_knowledge_summary(self) -> str:
        """Short digest of files read, files created and directories explored."""
        parts: List[str] = []
        if self._read_files:
            files = list(self._read_files)[:SUMMARY_MAX_READ_FILES]
            parts.append(f"Files already read: {', '.join(files)}")
        if self._created_files:
            created = list(self._created_files.values())[:SUMMARY_MAX_CREATED_FILES]
            parts.append(f"Files created: {', '.join(created)}")
        if self._directory_listings:
            dirs = list(self._directory_listings)[:SUMMARY_MAX_DIRECTORIES]
            parts.append(f"Directories explored: {', '.join(dirs)}")
        return "\n".join(parts)

    def serialize(self) -> FileTrackerSnapshot:
        """Snapshot path identities only. Counts and timestamps are dropped."""
        return FileTrackerSnapshot(
            read_files=list(self._read_files)[:SERIALIZE_MAX_READ_FILES],
            created_files=list(self._created_files.values())[
                :SERIALIZE_MAX_CREATED_FILES
            ],
            directories=list(self._directory_listings)[:SERIALIZE_MAX_DIRECTORIES],
        )

    def restore(self, state: Any) -> None:
        """
        Rebuild minimal tracking info from a snapshot.

        Accepts a FileTrackerSnapshot or its dict form. Every restored entry
        gets count 1 and a timestamp of now, so a resumed session knows what
        was done before without inheriting cooldowns.
        """
        snapshot = (
            state
            if isinstance(state, FileTrackerSnapshot)
            else FileTrackerSnapshot.from_dict(state or {})
        )
        now = self._clock()

        for file_path in snapshot.read_files:
            self._read_files[normalize_path(file_path)] = ReadFileRecord(
                count=1, last_read_time=now
            )
        for file_path in snapshot.created_files:
            self._created_files[normalize_filename(file_path)] = file_path
        for dir_path in snapshot.directories:
            self._directory_listings[normalize_path(dir_path)] = DirectoryListingRecord(
                files=[], last_list_time=now, count=1
            )

        logger.info(
            f"Restored file tracker state: {len(snapshot.read_files)} files, "
            f"{len(snapshot.created_files)} created, "
            f"{len(snapshot.directories)} dirs"
        )

    def reset(self) -> None:
        self._read_files.clear()
        self._created_files.clear()
        self._directory_listings.clear()
        self._operation_counts.clear()

    def _increment(self, operation: str) -> None:
        self._operation_counts[operation] = self._operation_counts.get(operation, 0) + 1
