"""
The postal service: owns the zone index, municipal index, cache and
geocoding stack, and hands them to the orchestrator and batch processor.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from ..geocoding.base import CacheStore
from ..geocoding.providers import GeminiGeocoder, GoogleMapsGeocoder, NominatimGeocoder, build_session
from ..geocoding.resolver import GeocodingResolver
from ..geocoding.storage import DuckDBCacheStore, GeocodeCache, InMemoryCacheStore
from ..geocoding.throttling import SimpleRateGate
from ..settings import Settings
from ..zones.municipal_index import MunicipalIndex
from ..zones.zone import MunicipalIndexEntry, PostalZone
from ..zones.zone_index import ZoneIndex, ZonePage
from .batch import BatchProcessor
from .models import AddressRecord, BatchOutcome, BatchResult, BatchSummary, ResolutionResult
from .orchestrator import AddressResolver
from .state import BatchStateStore, DuckDBBatchStateStore, InMemoryBatchStateStore, SavedBatch

logger = logging.getLogger(__name__)


class PostalService:
    """
    Explicitly owned resolution state.

    Build it once (``from_settings`` for production wiring, the constructor
    for tests), load zones and the municipal index, then resolve single
    records or whole batches.
    """

    def __init__(
        self,
        geocoder: GeocodingResolver,
        zones: Optional[ZoneIndex] = None,
        municipal_index: Optional[MunicipalIndex] = None,
        sub_area_lookup=None,
        prefer_municipal_index: bool = True,
        concurrency: int = 1,
        record_timeout_s: float = 8.0,
        quota_pause_s: float = 30.0,
        progress_interval_s: float = 0.5,
        state_store: Optional[BatchStateStore] = None,
    ):
        self.geocoder = geocoder
        self.cache: GeocodeCache = geocoder.cache
        self.zones = zones or ZoneIndex()
        self.municipal_index = municipal_index or MunicipalIndex()
        self.state_store = state_store or InMemoryBatchStateStore()
        self.resolver = AddressResolver(
            zones=self.zones,
            municipal_index=self.municipal_index,
            geocoder=geocoder,
            sub_area_lookup=sub_area_lookup,
            prefer_municipal_index=prefer_municipal_index,
        )
        self.processor = BatchProcessor(
            resolver=self.resolver,
            zones=self.zones,
            concurrency=concurrency,
            record_timeout_s=record_timeout_s,
            quota_pause_s=quota_pause_s,
            progress_interval_s=progress_interval_s,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, store: Optional[CacheStore] = None) -> "PostalService":
        """Wire providers, cache and scheduling from Settings."""
        if settings is None:
            settings = Settings()

        concurrency, min_delay_s = settings.schedule_profile()
        session = build_session()
        gate = SimpleRateGate(min_delay_s)
        common: dict[str, Any] = {"session": session, "timeout": settings.provider_timeout_s, "rate_limiter": gate}

        primary = GoogleMapsGeocoder(
            api_key=settings.google_maps_api_key if settings.google_configured else None,
            enabled=settings.google_configured,
            country_code=settings.country_code,
            **common,
        )
        secondary = NominatimGeocoder(
            base_url=settings.nominatim_url,
            user_agent=settings.nominatim_user_agent,
            country_code=settings.country_code,
            country_name=settings.country_name,
            **common,
        )
        tertiary = GeminiGeocoder(
            api_key=settings.gemini_api_key if settings.gemini_configured else None,
            enabled=settings.gemini_configured,
            model=settings.gemini_model,
            country_name=settings.country_name,
            **common,
        )

        if store is None:
            store = DuckDBCacheStore(settings.cache_db_path) if settings.cache_db_path else InMemoryCacheStore()

        geocoder = GeocodingResolver(
            cache=GeocodeCache(store),
            primary=primary,
            secondary=secondary,
            tertiary=tertiary,
            min_importance_precise=settings.min_importance_precise,
            min_importance_coarse=settings.min_importance_coarse,
            max_rate_limit_retries=settings.max_rate_limit_retries,
            rate_limit_base_delay_s=settings.rate_limit_base_delay_s,
            country_name=settings.country_name,
        )
        logger.info(
            f"Providers: google={primary.configured}, nominatim=True, gemini={tertiary.configured}; "
            f"concurrency={concurrency}, min_delay={min_delay_s}s"
        )
        return cls(
            geocoder=geocoder,
            sub_area_lookup=secondary.reverse_sub_area,
            prefer_municipal_index=settings.prefer_municipal_index,
            concurrency=concurrency,
            record_timeout_s=settings.record_timeout_s,
            quota_pause_s=settings.quota_pause_s,
            progress_interval_s=settings.progress_interval_s,
            state_store=DuckDBBatchStateStore.sharing(store) if isinstance(store, DuckDBCacheStore) else None,
        )

    # Data management

    def load_zones(self, zones: Iterable[PostalZone]) -> int:
        """Replace every loaded zone (clear-then-bulk-load)."""
        return self.zones.load(zones)

    def upsert_municipal_index(self, entries: Iterable[MunicipalIndexEntry]) -> int:
        return self.municipal_index.upsert(entries)

    def clear_municipal_index(self) -> None:
        self.municipal_index.clear()
        logger.info("Municipal index cleared")

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("Geocode cache cleared")

    def search_zones(self, query: str = "", page: int = 1, limit: int = 20) -> ZonePage:
        return self.zones.search(query, page=page, limit=limit)

    def stats(self) -> dict[str, int]:
        return {
            "zones": len(self.zones),
            "municipal_index_entries": len(self.municipal_index),
            "cache_entries": len(self.cache),
            "cache_hits": self.cache.hits,
            "cache_misses": self.cache.misses,
        }

    # Resolution

    def resolve(self, record: AddressRecord | dict) -> ResolutionResult:
        return self.processor.reprocess(record)

    def process(self, records, **kwargs):
        """See BatchProcessor.process."""
        return self.processor.process(records, **kwargs)

    # Batch state

    def save_batch_state(self, outcome: BatchOutcome, file_name: str = "") -> None:
        """Persist ``outcome`` as the latest batch, replacing any earlier one."""
        self.state_store.save(outcome, file_name)

    def load_batch_state(self) -> Optional[SavedBatch]:
        return self.state_store.load()

    def resume_batch(self, **kwargs) -> Optional[BatchOutcome]:
        """
        Resolve the SIN_PROCESAR rows of the saved batch.

        Rows that already ran keep their results. The merged outcome is
        saved back under the same file name and returned; None when no
        batch was saved. Keyword arguments go to ``process``.
        """
        saved = self.load_batch_state()
        if saved is None:
            return None

        pending = saved.pending
        if not pending:
            logger.info(f"Saved batch '{saved.file_name}' has nothing left to process")
            return saved.outcome

        logger.info(f"Resuming '{saved.file_name}': {len(pending)} of {len(saved.outcome)} rows pending")
        rerun = self.process([saved.outcome.results[i].record for i in pending], **kwargs)

        results = list(saved.outcome.results)
        for position, r in zip(pending, rerun):
            results[position] = BatchResult(index=position, record=r.record, result=r.result)
        merged = BatchOutcome(
            results=results,
            summary=BatchSummary.from_results(results, cancelled=rerun.summary.cancelled),
        )
        self.save_batch_state(merged, saved.file_name)
        return merged

    def close(self) -> None:
        self.cache.close()
