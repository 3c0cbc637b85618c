"""Session: binds a host program to the class-model passes."""

from __future__ import annotations

import logging
import time
from typing import Any, Iterable, List, Optional

from classrecon.core.archive import ClassModelArchive, FileStorage
from classrecon.core.attribution import CallAttributor
from classrecon.core.cancel import CancellationToken
from classrecon.core.dyncast import DynamicCastResolver
from classrecon.core.errors import AnalysisCancelled, StructuralError
from classrecon.core.events import (
    AnalysisEvent,
    AnalysisEventCallback,
    AnalysisEventType,
    emit,
)
from classrecon.core.layout import LayoutBuilder
from classrecon.core.rtti import create_parser, load_classes
from classrecon.core.store import ClassModelStore
from classrecon.core.types.config import ReconConfig, load_config
from classrecon.core.types.model import ClassType
from classrecon.core.types.results import AnalysisReport, LayoutOutcome

logger = logging.getLogger(__name__)


class AnalysisSession:
    """Runs layout synthesis, attribution and dynamic-cast recovery.

    *program* is the host: it must provide memory, listing, decompiler,
    dataflow and signature-sink access (``InMemoryProgram`` provides all
    of them).  Individual collaborators can be swapped with keyword
    arguments.

    Usage:
        with AnalysisSession(config, program) as session:
            session.load([0x4000, 0x4100])
            report = session.run()

    Lifecycle: load(roots) -> run(token) -> end()
    """

    def __init__(
        self,
        config: Optional[ReconConfig] = None,
        program: Any = None,
        store: Optional[ClassModelStore] = None,
        event_callback: Optional[AnalysisEventCallback] = None,
        config_path: Optional[str] = None,
        decompiler: Any = None,
        dataflow: Any = None,
        sink: Any = None,
    ):
        if config is not None:
            self.config = config
        else:
            self.config = load_config(config_path)

        if self.config.verbose:
            logging.basicConfig(level=logging.DEBUG)

        if program is None:
            raise ValueError("AnalysisSession needs a host program")
        self.program = program
        self.decompiler = decompiler or program
        self.dataflow = dataflow or program
        self.sink = sink or program
        self._event_callback = event_callback

        analysis = self.config.analysis
        self.parser = create_parser(
            analysis.vendor,
            program,
            program,
            pointer_size=analysis.pointer_size,
            image_base=analysis.image_base,
        )
        if store is None:
            store = ClassModelStore(parser=self.parser, pointer_size=analysis.pointer_size)
        self.store = store

        self.archive: Optional[ClassModelArchive] = None
        if self.config.archive.enabled:
            self.archive = ClassModelArchive(FileStorage(self.config.archive.directory))

        self.last_report: Optional[AnalysisReport] = None
        self._ended = False

    # -- loading -------------------------------------------------------------

    def load(self, roots: Iterable[int]) -> List[ClassType]:
        """Parse RTTI roots (``type_info`` or vftable addresses) into the store."""
        loaded = load_classes(self.store, self.parser, roots)
        logger.info("Loaded %d classes (%d in store)", len(loaded), len(self.store))
        return loaded

    def restore(self) -> int:
        """Load previously archived class models; returns how many."""
        if self.archive is None:
            return 0
        return self.archive.load(self.store)

    # -- passes --------------------------------------------------------------

    def run(self, token: Optional[CancellationToken] = None) -> AnalysisReport:
        """Run every enabled pass; cancellation ends the run cleanly.

        :class:`~classrecon.core.errors.AbiMismatchError` propagates: the
        dynamic-cast pass cannot run on a binary that breaks its ABI
        assumptions.
        """
        report = AnalysisReport()
        try:
            if self.config.layout.enabled:
                self.build_layouts(report, token)
            if self.config.attribution.enabled:
                self.attribute_classes(report, token)
            if self.config.dynamic_cast.enabled:
                self.resolve_dynamic_casts(report, token)
        except AnalysisCancelled as exc:
            logger.info("Analysis cancelled: %s", exc)
            report.cancelled = True
            emit(
                self._event_callback,
                AnalysisEvent(AnalysisEventType.CANCELLED, message=str(exc), succeeded=False),
            )
        finally:
            report.states = self.store.states()
            self.last_report = report

        if self.config.show_report:
            from classrecon.core.display import render_report

            render_report(report, store=self.store)
        return report

    def build_layouts(
        self, report: AnalysisReport, token: Optional[CancellationToken] = None
    ) -> None:
        builder = LayoutBuilder(self.store, self.config.layout)
        for cls in self.store.classes():
            t0 = time.monotonic()
            try:
                layout = builder.build(cls)
            except StructuralError as exc:
                logger.warning("Layout of %s skipped: %s", cls.name, exc)
                report.layouts.append(
                    LayoutOutcome(class_key=cls.key, name=cls.name, built=False, error=str(exc))
                )
                emit(
                    self._event_callback,
                    AnalysisEvent(
                        AnalysisEventType.LAYOUT_FAILED,
                        class_key=cls.key,
                        message=str(exc),
                        succeeded=False,
                        duration=time.monotonic() - t0,
                    ),
                )
            else:
                report.layouts.append(
                    LayoutOutcome(class_key=cls.key, name=cls.name, built=True, size=layout.size)
                )
                emit(
                    self._event_callback,
                    AnalysisEvent(
                        AnalysisEventType.LAYOUT_BUILT,
                        class_key=cls.key,
                        message=cls.name,
                        succeeded=True,
                        duration=time.monotonic() - t0,
                        metadata={"size": layout.size, "fields": len(layout.fields)},
                    ),
                )
            if token is not None:
                token.check()
        built = sum(1 for o in report.layouts if o.built)
        logger.info("Built %d of %d layouts", built, len(report.layouts))

    def attribute_classes(
        self, report: AnalysisReport, token: Optional[CancellationToken] = None
    ) -> None:
        attributor = CallAttributor(
            self.store,
            self.program,
            self.decompiler,
            self.config.attribution,
            event_callback=self._event_callback,
        )
        for cls in self.store.classes():
            outcome = attributor.analyze_class(cls, token)
            report.attributions.append(outcome)
            if token is not None:
                token.check()
        logger.info("Committed %d constructor/destructor functions", report.committed_functions)

    def resolve_dynamic_casts(
        self, report: AnalysisReport, token: Optional[CancellationToken] = None
    ) -> None:
        resolver = DynamicCastResolver(
            self.store,
            self.program,
            self.dataflow,
            self.sink,
            self.config.dynamic_cast,
            event_callback=self._event_callback,
        )
        try:
            report.dynamic_cast = resolver.run(token)
        finally:
            if report.dynamic_cast is None:
                report.dynamic_cast = resolver.result

    # -- lifecycle -----------------------------------------------------------

    def end(self) -> None:
        """End the session, archiving the class models when enabled."""
        if self._ended:
            return
        self._ended = True
        if self.archive is not None:
            saved = self.archive.save(self.store)
            logger.info("Archived %d class models", saved)

    def __enter__(self) -> AnalysisSession:
        return self

    def __exit__(self, *exc) -> None:
        self.end()
