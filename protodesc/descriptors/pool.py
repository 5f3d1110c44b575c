"""Descriptor pool: the registry that owns every descriptor of a build session.

A pool is seeded from an ordered list of root directories, which double as the
import search path. Files are parsed and declared as they are loaded; linking
runs once, on finalize, which happens implicitly on the first lookup.
"""

import itertools
import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path
from typing import TypeVar

from ..compiler.diagnostics import (
    Diagnostic,
    DiagnosticKind,
    DiagnosticReporter,
    ErrorCallback,
    LexicalError,
    ProtoSyntaxError,
)
from ..compiler.parser import parse
from ..compiler.resolver import Linker
from .types import (
    EMPTY_TABLES,
    DescriptorTables,
    EnumRecord,
    EnumValueRecord,
    FieldRecord,
    Handle,
    HandleKind,
    MessageRecord,
    MethodRecord,
)

logger = logging.getLogger(__name__)

PROTO_SUFFIX = ".proto"

MessageVisitor = Callable[[Handle], None]

_pool_ids = itertools.count(1)

TRecord = TypeVar("TRecord")


class PoolError(RuntimeError):
    """Base class for misuse of a descriptor pool."""


class PoolStateError(PoolError):
    """Raised when an operation is not allowed in the pool's current state."""


class StaleHandleError(PoolError):
    """Raised for a handle issued by another pool or an older generation."""


class HandleKindError(PoolError):
    """Raised when a handle of one descriptor kind is used as another."""


class DescriptorPool:
    """Registry of messages, fields, enums and methods built from schema files.

    Several pools may coexist; each issues handles tagged with its own id and
    generation. Reinitializing or closing a pool invalidates every handle it
    issued before.
    """

    def __init__(
        self,
        directories: Iterable[str | Path] = (),
        error_cb: ErrorCallback | None = None,
    ):
        self.pool_id = next(_pool_ids)
        self.directories = [Path(d) for d in directories]
        self._reporter = DiagnosticReporter(error_cb)
        self._generation = 0
        self._lock = threading.RLock()
        self._closed = False
        self._reset()

        if self.directories:
            self.load_directories()

    def _reset(self) -> None:
        self._linker = Linker(self._reporter)
        self._tables: DescriptorTables | None = None
        self._roots: dict[str, Path] = {}
        self._failed: set[str] = set()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def diagnostics(self) -> list[Diagnostic]:
        """Every problem reported since the pool was (re)initialized."""
        return list(self._reporter.diagnostics)

    @property
    def finalized(self) -> bool:
        return self._tables is not None

    def _check_open(self) -> None:
        if self._closed:
            raise PoolStateError(f"Descriptor pool {self.pool_id} is closed")

    # Loading

    def _import_name(self, path: Path) -> tuple[str, Path]:
        """Return the name other files import this file by, and its root."""
        resolved = path.resolve()
        for root in self.directories:
            try:
                return resolved.relative_to(root.resolve()).as_posix(), root
            except ValueError:
                continue
        return path.name, path.parent

    def _load(self, path: Path, name: str, root: Path) -> bool:
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            self._failed.add(name)
            self._reporter.error(DiagnosticKind.IO, f"Unable to read file: {exc}", str(path))
            return False

        try:
            proto_file = parse(text, name)
        except (LexicalError, ProtoSyntaxError) as exc:
            self._failed.add(name)
            self._reporter.report(exc.diagnostic)
            return False

        self._roots[name] = root
        self._linker.declare(proto_file)
        logger.debug("Loaded %s from %s", name, path)
        return True

    def load_file(self, path: str | Path) -> bool:
        """Parse one file and register its declarations.

        Returns False if the file could not be read, tokenized or parsed; the
        problem is reported through the error callback. A file already loaded
        under the same import name is skipped.

        Raises:
            PoolStateError: when the pool is closed or already finalized.
        """
        with self._lock:
            self._check_open()
            if self._tables is not None:
                raise PoolStateError("Cannot load files into a finalized descriptor pool")

            path = Path(path)
            name, root = self._import_name(path)
            if name in self._linker.files:
                logger.debug("Skipping %s, already loaded as %s", path, name)
                return True
            return self._load(path, name, root)

    def load_directories(self) -> int:
        """Load every schema file found under the pool's directories.

        Roots are searched in order and each one recursively, in sorted order.
        Returns the number of files loaded successfully.
        """
        loaded = 0
        for root in self.directories:
            if not root.is_dir():
                self._reporter.error(
                    DiagnosticKind.IO, "Directory does not exist or is not readable", str(root)
                )
                continue

            for path in sorted(root.rglob(f"*{PROTO_SUFFIX}")):
                if path.is_file() and self.load_file(path):
                    loaded += 1

        logger.debug("Loaded %d files from %d directories", loaded, len(self.directories))
        return loaded

    def _find_import(self, import_path: str, importer: str) -> tuple[Path, Path] | None:
        roots = [*self.directories]
        importer_root = self._roots.get(importer)
        if importer_root is not None and importer_root not in roots:
            roots.append(importer_root)

        for root in roots:
            candidate = root / import_path
            if candidate.is_file():
                return candidate, root
        return None

    def _load_imports(self) -> None:
        attempted: set[str] = set()
        while True:
            pending = [
                (scope, imp)
                for scope in list(self._linker.files.values())
                for imp in scope.imports
                if imp.path not in self._linker.files
                and imp.path not in self._failed
                and imp.path not in attempted
            ]
            if not pending:
                return

            for scope, imp in pending:
                if imp.path in attempted:
                    continue
                attempted.add(imp.path)

                found = self._find_import(imp.path, scope.name)
                if found is None:
                    self._reporter.error(
                        DiagnosticKind.IO,
                        f"Import '{imp.path}' was not found",
                        scope.name,
                        imp.line,
                        imp.column,
                    )
                    continue
                self._load(found[0], imp.path, found[1])

    def finalize(self) -> None:
        """Load missing imports and link every loaded file.

        Idempotent; lookups call it implicitly.
        """
        with self._lock:
            self._check_open()
            if self._tables is not None:
                return
            self._load_imports()
            self._tables = self._linker.link()
            logger.info(
                "Descriptor pool %d (generation %d) finalized with %d diagnostics",
                self.pool_id,
                self._generation,
                len(self._reporter.diagnostics),
            )

    @property
    def tables(self) -> DescriptorTables:
        """The linked descriptor tables, finalizing the pool if needed."""
        tables = self._tables
        if tables is None:
            self.finalize()
            tables = self._tables
        if self._closed or tables is None:
            raise PoolStateError(f"Descriptor pool {self.pool_id} is closed")
        return tables

    # Lifecycle

    def reinitialize(
        self,
        directories: Iterable[str | Path] | None = None,
        error_cb: ErrorCallback | None = None,
    ) -> None:
        """Discard every descriptor and rebuild from the given directories.

        Handles issued before the call become stale. Callers must make sure
        no other thread is reading the pool while it is rebuilt. A new
        error_cb replaces the current one; otherwise the old one is kept.
        """
        with self._lock:
            self._check_open()
            if error_cb is not None:
                self._reporter.error_cb = error_cb
            if directories is not None:
                self.directories = [Path(d) for d in directories]
            self._generation += 1
            self._reporter.clear()
            self._reset()
            logger.debug("Reinitializing pool %d, generation %d", self.pool_id, self._generation)
            self.load_directories()

    def close(self) -> None:
        """Release every descriptor; the pool cannot be used afterwards."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._generation += 1
            self._reset()
            self._tables = EMPTY_TABLES

    def __enter__(self) -> "DescriptorPool":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Handles

    def handle(self, kind: HandleKind, index: int) -> Handle:
        return Handle(self.pool_id, self._generation, kind, index)

    def _record(self, handle: Handle, kind: HandleKind, arena: tuple[TRecord, ...]) -> TRecord:
        if handle.pool_id != self.pool_id or handle.generation != self._generation:
            raise StaleHandleError(
                f"Handle {handle} does not belong to pool {self.pool_id} "
                f"generation {self._generation}"
            )
        if handle.kind != kind:
            raise HandleKindError(f"Expected a {kind} handle, got a {handle.kind} handle")
        return arena[handle.index]

    def message(self, handle: Handle) -> MessageRecord:
        return self._record(handle, HandleKind.MESSAGE, self.tables.messages)

    def field(self, handle: Handle) -> FieldRecord:
        return self._record(handle, HandleKind.FIELD, self.tables.fields)

    def enum(self, handle: Handle) -> EnumRecord:
        return self._record(handle, HandleKind.ENUM, self.tables.enums)

    def enum_value(self, handle: Handle) -> EnumValueRecord:
        return self._record(handle, HandleKind.ENUM_VALUE, self.tables.enum_values)

    def method(self, handle: Handle) -> MethodRecord:
        return self._record(handle, HandleKind.METHOD, self.tables.methods)

    # Lookups

    def find_message_by_name(self, full_name: str) -> Handle | None:
        index = self.tables.messages_by_name.get(full_name.lstrip("."))
        return None if index is None else self.handle(HandleKind.MESSAGE, index)

    def find_enum_by_name(self, full_name: str) -> Handle | None:
        index = self.tables.enums_by_name.get(full_name.lstrip("."))
        return None if index is None else self.handle(HandleKind.ENUM, index)

    def find_method_by_name(self, full_name: str) -> Handle | None:
        index = self.tables.methods_by_name.get(full_name.lstrip("."))
        return None if index is None else self.handle(HandleKind.METHOD, index)

    def messages(self) -> Iterator[Handle]:
        """Yield every message, nested ones included, exactly once.

        Messages come in load order, each followed by the messages nested in it.
        """
        for index in range(len(self.tables.messages)):
            yield self.handle(HandleKind.MESSAGE, index)

    def for_each_message(self, visitor: MessageVisitor) -> int:
        """Call visitor with every message handle; returns the visit count."""
        count = 0
        for handle in self.messages():
            visitor(handle)
            count += 1
        return count


def reinit_descriptor_pool(
    pool: DescriptorPool | None,
    directories: Iterable[str | Path],
    error_cb: ErrorCallback | None = None,
) -> DescriptorPool:
    """Rebuild a pool from directories, creating it if needed, and finalize it."""
    if pool is None:
        pool = DescriptorPool(directories, error_cb)
    else:
        pool.reinitialize(directories, error_cb)
    pool.finalize()
    return pool
