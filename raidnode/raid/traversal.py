"""
Resumable, optionally shuffled, multi-threaded enumeration of candidate files.
"""
import logging
import random
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from fnmatch import fnmatchcase
from typing import Callable, Deque, Iterable, List, Optional, Sequence, Tuple, Union

from ..models import FileSnapshot, PolicyInfo
from ..storage import FileSystem
from ..storage.paths import normalize_path, now_ms, num_blocks
from .codec import CodecRegistry
from .parity import get_parity_file

logger = logging.getLogger(__name__)


class _FinishToken:
    def __repr__(self):
        return "FINISH_TOKEN"


# Returned by DirectoryTraversal.next() once the enumeration is exhausted
FINISH_TOKEN = _FinishToken()

FileFilter = Callable[[FileSnapshot], bool]


class DirectoryTraversal:
    """Lazy walk over a set of roots.

    Directory listings fan out over a thread pool, but results are handed
    to a single caller through next(). The walk keeps its own cursor, so a
    caller may stop pulling at any point and resume later without losing or
    repeating files.
    """

    def __init__(self, name: str, fs: FileSystem, roots: Iterable[FileSnapshot],
                 file_filter: Optional[FileFilter] = None, num_threads: int = 1,
                 shuffle: bool = False, rng: Optional[random.Random] = None):
        self.name = name
        self.fs = fs
        self.file_filter = file_filter
        self.num_threads = max(1, num_threads)
        self.shuffle = shuffle
        self._rng = rng or random.Random()
        self._pending: List[str] = []
        self._output: Deque[FileSnapshot] = deque()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._finished = False
        self.files_returned = 0

        root_files = []
        root_dirs = []
        for root in roots:
            (root_dirs if root.is_dir else root_files).append(root)
        self._enqueue(self._apply_filter(root_files), [d.path for d in root_dirs])

    def _apply_filter(self, files: Sequence[FileSnapshot]) -> List[FileSnapshot]:
        if self.file_filter is None:
            return list(files)
        selected = []
        for f in files:
            try:
                if self.file_filter(f):
                    selected.append(f)
            except OSError as e:
                logger.warning(f"Traversal {self.name}: skipping {f.path}: {str(e)}")
        return selected

    def _enqueue(self, files: List[FileSnapshot], dirs: List[str]) -> None:
        if self.shuffle:
            self._rng.shuffle(files)
            self._rng.shuffle(dirs)
        self._output.extend(files)
        # Stack order: the first listed directory is visited first
        self._pending.extend(reversed(dirs))

    def _list_directory(self, path: str) -> Tuple[List[FileSnapshot], List[str]]:
        try:
            children = self.fs.list_status(path)
        except FileNotFoundError:
            logger.warning(f"Traversal {self.name}: {path} disappeared during scan")
            return [], []
        except OSError as e:
            logger.error(f"Traversal {self.name}: cannot list {path}: {str(e)}")
            return [], []
        files = [c for c in children if not c.is_dir]
        dirs = [c.path for c in children if c.is_dir]
        return self._apply_filter(files), dirs

    def _expand(self) -> None:
        batch = [self._pending.pop() for _ in range(min(self.num_threads, len(self._pending)))]
        if self.num_threads == 1:
            results = [self._list_directory(batch[0])]
        else:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.num_threads,
                    thread_name_prefix=f"traversal-{self.name}"
                )
            results = list(self._executor.map(self._list_directory, batch))
        files: List[FileSnapshot] = []
        dirs: List[str] = []
        for batch_files, batch_dirs in results:
            files.extend(batch_files)
            dirs.extend(batch_dirs)
        self._enqueue(files, dirs)

    def next(self) -> Union[FileSnapshot, _FinishToken]:
        """Next selected file, or FINISH_TOKEN when the walk is complete"""
        while not self._output:
            if not self._pending:
                self._finish()
                return FINISH_TOKEN
            self._expand()
        self.files_returned += 1
        return self._output.popleft()

    def __iter__(self):
        while True:
            f = self.next()
            if f is FINISH_TOKEN:
                return
            yield f

    def _finish(self) -> None:
        if not self._finished:
            logger.info(f"Traversal {self.name} finished, {self.files_returned} files returned")
        self._finished = True
        self.close()

    @property
    def finished(self) -> bool:
        return self._finished

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    @classmethod
    def file_retriever(cls, name: str, fs: FileSystem, roots: Iterable[FileSnapshot],
                       num_threads: int = 1, shuffle: bool = False) -> "DirectoryTraversal":
        """Every file under roots"""
        return cls(name, fs, roots, None, num_threads, shuffle)

    @classmethod
    def raid_file_retriever(cls, policy: PolicyInfo, roots: Iterable[FileSnapshot],
                            all_policies: Sequence[PolicyInfo], fs: FileSystem,
                            codecs: CodecRegistry, num_threads: int = 1,
                            shuffle: bool = False,
                            parity_fs: Optional[FileSystem] = None) -> "DirectoryTraversal":
        """Files under roots that still need raiding by policy"""
        file_filter = RaidFileFilter(policy, all_policies, fs, codecs, parity_fs)
        return cls(policy.name, fs, roots, file_filter, num_threads, shuffle)


def path_matches_expression(path: str, expression: str) -> bool:
    """True if path is, or lies below, a path matching the glob expression"""
    path_parts = [p for p in normalize_path(path).split("/") if p]
    expr_parts = [p for p in normalize_path(expression).split("/") if p]
    if len(path_parts) < len(expr_parts):
        return False
    return all(fnmatchcase(p, e) for p, e in zip(path_parts, expr_parts))


class RaidFileFilter:
    """Decides whether a file still needs raiding by a policy.

    Files already protected by a higher priority codec, or sitting under
    the source paths of a policy with a higher priority codec, belong to
    that other policy and are skipped.
    """

    def __init__(self, policy: PolicyInfo, all_policies: Sequence[PolicyInfo],
                 fs: FileSystem, codecs: CodecRegistry,
                 parity_fs: Optional[FileSystem] = None):
        self.policy = policy
        self.fs = fs
        self.parity_fs = parity_fs or fs
        self.codec = codecs.get_codec(policy.codec_id)
        self.target_replication = policy.target_replication
        self.mod_time_period = policy.mod_time_period_ms
        self.higher_codecs = [
            c for c in codecs.get_codecs() if c.priority > self.codec.priority
        ]
        self.claiming_policies = [
            other for other in all_policies
            if other.name != policy.name and other.should_raid
            and codecs.has_codec(other.codec_id)
            and codecs.get_codec(other.codec_id).priority > self.codec.priority
        ]

    def is_claimed(self, path: str) -> bool:
        return any(
            path_matches_expression(path, expr)
            for other in self.claiming_policies
            for expr in other.src_paths
        )

    def __call__(self, stat: FileSnapshot) -> bool:
        if stat.is_dir:
            return False
        if now_ms() - stat.modification_time < self.mod_time_period:
            return False
        if num_blocks(stat) <= 2:
            return False
        if self.is_claimed(stat.path):
            return False
        for codec in self.higher_codecs:
            if get_parity_file(codec, stat.path, self.fs, self.parity_fs) is not None:
                return False
        if get_parity_file(self.codec, stat.path, self.fs, self.parity_fs) is not None:
            return stat.replication > self.target_replication
        return True
