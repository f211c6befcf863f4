"""One end-to-end pipeline run.

Stages run strictly one after another for the whole batch::

    scrape -> ocr (+ classify) -> extract (aggregate per market) -> merge
           -> persist -> notify

Each stage isolates per-item failures.  A stage that had work to do but
finished no item at all raises :class:`StageFailedError`, which fails the run.
Missing configuration fails the run before any stage executes.
"""

from __future__ import annotations

import logging
import time
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import select

from mercado_radar.config import Settings, get_settings
from mercado_radar.models import Market
from mercado_radar.schemas import RunReport, StageResult
from mercado_radar.services.merger import merge_promotions_by_period

logger = logging.getLogger(__name__)


class StageFailedError(RuntimeError):
    def __init__(self, stage: StageResult) -> None:
        self.stage = stage
        detail = "; ".join(stage.errors[:3])
        super().__init__(
            f"Stage '{stage.name}' failed: 0/{stage.processed} items succeeded"
            + (f" ({detail})" if detail else "")
        )


class PipelineRunner:
    """Wires the collaborators together.

    Every collaborator can be injected (tests use fakes); defaults are the
    real Instagram, Cloud Vision, Gemini and e-mail backends.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        session_factory=None,
        scraper=None,
        ocr=None,
        extractor=None,
        email_provider=None,
        notify: bool | None = None,
        dispose_engine: bool = True,
        today: date | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._session_factory = session_factory
        self._scraper = scraper
        self._ocr = ocr
        self._extractor = extractor
        self._email_provider = email_provider
        self.notify = self.settings.notifications_enabled if notify is None else notify
        self.dispose_engine = dispose_engine
        self._today = today

    # ------------------------------------------------------------------
    # Lazy collaborators
    # ------------------------------------------------------------------

    def _get_session_factory(self):
        if self._session_factory is None:
            from mercado_radar.database import async_session

            self._session_factory = async_session
        return self._session_factory

    def _get_scraper(self):
        if self._scraper is None:
            from mercado_radar.scrapers.instagram import InstagramScraper

            self._scraper = InstagramScraper(self.settings)
        return self._scraper

    def _get_ocr(self):
        if self._ocr is None:
            from mercado_radar.services.ocr import OCRProcessor, VisionOCRClient

            self._ocr = OCRProcessor(VisionOCRClient(self.settings))
        return self._ocr

    def _get_extractor(self):
        if self._extractor is None:
            from mercado_radar.services.extractor import StructuredExtractor
            from mercado_radar.services.llm import GeminiClient

            self._extractor = StructuredExtractor(GeminiClient(self.settings))
        return self._extractor

    def local_today(self) -> date:
        """Current day in the configured timezone (fixed when given at construction)."""
        if self._today is not None:
            return self._today
        return datetime.now(ZoneInfo(self.settings.timezone)).date()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self, target_date: date | None = None) -> RunReport:
        """Execute one run.  Never raises; failures are reported on the result."""
        from mercado_radar.scrapers.instagram import determine_target_date

        started = time.monotonic()
        today = self.local_today()
        target = determine_target_date(
            target_date,
            include_previous_day=self.settings.include_previous_day,
            today=today,
        )
        report = RunReport(target_date=target)
        logger.info("Pipeline run started for %s", target.isoformat())

        try:
            self.settings.validate_required()
            await self._execute(report, today)
            report.success = True
            logger.info(
                "Pipeline run for %s completed in %.1fs",
                target.isoformat(),
                time.monotonic() - started,
            )
        except Exception as exc:
            report.success = False
            report.error = str(exc) or exc.__class__.__name__
            logger.exception("Pipeline run for %s failed", target.isoformat())
        finally:
            report.duration = time.monotonic() - started
            if self.dispose_engine:
                await self._cleanup()

        for name, stage in report.stages.items():
            if stage.errors:
                logger.warning("Stage %s reported %d error(s): %s", name, len(stage.errors), stage.errors)
        return report

    async def _execute(self, report: RunReport, today: date) -> None:
        """Undated promotions and the report use *today*, not the target date."""
        target = report.target_date
        session_factory = self._get_session_factory()

        async with session_factory() as session:
            # 1. Scrape
            result = await session.execute(select(Market).order_by(Market.name))
            markets = list(result.scalars().all())
            if not markets:
                raise RuntimeError("No markets found in the database")
            stage, posts = await self._get_scraper().scrape(markets, target)
            self._record(report, stage)

            posts = [post for post in posts if post.images]
            if not posts:
                logger.warning("No image posts published on %s", target.isoformat())

            # 2. OCR + classification
            stage, ocr_results = await self._get_ocr().execute(posts)
            self._record(report, stage)

            # 3. Aggregation + structured extraction
            stage, candidates = await self._get_extractor().execute(ocr_results, today)
            self._record(report, stage)

            # 4. Merge by validity window
            merged = merge_promotions_by_period(candidates)
            report.stages["merge"] = StageResult(
                name="merge",
                processed=len(candidates),
                succeeded=len(candidates),
                details={"merged_promotions": len(merged)},
            )

            # 5. Persist
            from mercado_radar.services.persister import PromotionPersister

            stage, _stats = await PromotionPersister(session).execute(
                merged, extracted_at=datetime.now(timezone.utc)
            )
            self._record(report, stage)

            # 6. Notify
            if self.notify:
                from mercado_radar.services.notification import PromotionNotifier

                notifier = PromotionNotifier(
                    session, provider=self._email_provider, settings=self.settings
                )
                stage = await notifier.send_active_promotions(today)
                self._record(report, stage)

    @staticmethod
    def _record(report: RunReport, stage: StageResult) -> None:
        report.stages[stage.name] = stage
        logger.info(
            "Stage %s: %d processed, %d succeeded, %d errored",
            stage.name,
            stage.processed,
            stage.succeeded,
            stage.errored,
        )
        if not stage.success:
            raise StageFailedError(stage)

    async def _cleanup(self) -> None:
        from mercado_radar.database import close_db

        try:
            await close_db()
        except Exception:
            logger.exception("Cleanup failed")


async def run_pipeline(target_date: date | None = None, *, notify: bool | None = None) -> RunReport:
    """Convenience entry point for the scheduler, the API and scripts."""
    runner = PipelineRunner(notify=notify, dispose_engine=False)
    return await runner.run(target_date)
