"""
Main Pipeline - Master Orchestrator
Coordinates the time-series trend analysis from acquisition filtering to trend report

Execution flow:
1. Acquisition filtering (Sentinel-2 optical, Sentinel-1 radar)
2. Per-acquisition processing: mask -> features -> spatial reduction (worker pool)
3. Time-series assembly
4. Linear trend estimation (per series, and per pixel for the change rasters)
5. Series export and summary report

Author: Research Team
License: MIT
"""

import argparse
import logging
import sys
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from .config import load_config, build_region
from .core import Acquisition, Collection, FeatureSeries, ReducedAcquisition, TrendFit, to_utc
from .exceptions import AcquisitionError, EmptyCollectionError, InsufficientDataError, SentinelTrendsError
from .data_acquisition import (
    AcquisitionFilter,
    ImageryProvider,
    LocalRasterProvider,
    cloud_cover_filter,
    orbit_filters
)
from .preprocessing import MaskApplier, MaskingCapability, OpticalIndexEngine, RadarProcessor, masking_from_config
from .aggregation import SpatialReducer, assemble_all, series_to_frame
from .models import TrendEstimator, fit_pixelwise, save_change_raster
from .utils.helpers import ProgressTracker, FileHandlers

logger = logging.getLogger(__name__)


def configure_logging(log_dir: Optional[str] = None, level: int = logging.INFO) -> None:
    """Console logging, plus a timestamped log file when log_dir is given"""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(
            Path(log_dir) / f'pipeline_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log'
        ))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


def build_provider(provider_cfg: Dict[str, Any]) -> ImageryProvider:
    """Provider named in the config"""
    if provider_cfg['type'] == 'earthengine':
        # Imported lazily so local runs do not need Earth Engine credentials
        from .data_acquisition.sentinel_processor import EarthEngineProvider
        ee_cfg = provider_cfg.get('earthengine', {})
        return EarthEngineProvider(
            project=ee_cfg.get('project'),
            crs=ee_cfg.get('crs', 'EPSG:3857'),
            scale=ee_cfg.get('scale', 10),
            max_images=ee_cfg.get('max_images', 500),
            bands=ee_cfg.get('bands') or None
        )
    return LocalRasterProvider(provider_cfg['catalog'])


class TrendAnalysisPipeline:
    """Master orchestrator for the optical and radar trend analysis"""

    def __init__(
        self,
        config_path: Optional[str] = "config.yaml",
        config: Optional[Dict[str, Any]] = None,
        provider: Optional[ImageryProvider] = None,
        masking: Optional[MaskingCapability] = None
    ):
        """
        Initialize pipeline

        Args:
            config_path: YAML config; ignored when config is given
            config: Already-loaded configuration dict
            provider: Imagery provider; built from the config when omitted
            masking: Masking capability; built from the config when omitted
        """
        self.config = config if config is not None else load_config(config_path)

        analysis = self.config['analysis']
        self.start = to_utc(analysis['start_date'])
        self.end = to_utc(analysis['end_date'])
        self.region = build_region(analysis['region'])
        self.max_workers = int(analysis['max_workers'])

        self.provider = provider or build_provider(self.config['provider'])
        self.acquisition_filter = AcquisitionFilter(self.provider)
        self.reducer = SpatialReducer(analysis['reducer'], analysis['scale'])
        self.estimator = TrendEstimator(analysis['time_unit'])

        optical_cfg = self.config['optical']
        self.mask_applier = MaskApplier(masking or masking_from_config(optical_cfg['masking']))
        self.optical_engine = OpticalIndexEngine(
            optical_cfg['features'],
            band_roles=optical_cfg['band_roles'],
            reflectance_scale=optical_cfg['reflectance_scale']
        )

        radar_cfg = self.config['radar']
        self.radar_engine = RadarProcessor(
            radar_cfg['features'],
            speckle_filter_window=radar_cfg['speckle_filter_window'],
            strict_db=radar_cfg['strict_db']
        )

        self.output_dir = Path(self.config['paths']['output'])
        self._cancel = threading.Event()

        # Feature-enhanced rasters kept for the per-pixel change maps
        self.change_raster_features: List[str] = list(self.config['trend']['change_rasters'])
        self._raster_stacks: Dict[str, List[Acquisition]] = {}
        self._raster_lock = threading.Lock()

        self.series: Dict[str, FeatureSeries] = {}
        self.trends: Dict[str, Optional[TrendFit]] = {}
        self.results: Dict[str, Any] = {}
        logger.info("Pipeline initialized")

    # ------------------------------------------------------------------
    # Per-acquisition stage
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Stop after the acquisitions currently being processed"""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def _keep_rasters(self, enhanced: Acquisition) -> None:
        wanted = [f for f in self.change_raster_features if f in enhanced.bands]
        if not wanted:
            return
        with self._raster_lock:
            for feature in wanted:
                self._raster_stacks.setdefault(feature, []).append(enhanced.select([feature]))

    def _reset_rasters(self, features: Sequence[str]) -> None:
        with self._raster_lock:
            for feature in features:
                self._raster_stacks.pop(feature, None)

    def _process_optical(self, acquisition: Acquisition) -> Optional[ReducedAcquisition]:
        masked = self.mask_applier.try_apply(acquisition)
        if masked is None:
            return None
        enhanced = self.optical_engine.compute(masked)
        reduced = self.reducer.reduce_acquisition(enhanced, self.region, self.optical_engine.indices)
        self._keep_rasters(enhanced)
        return reduced

    def _process_radar(self, acquisition: Acquisition) -> Optional[ReducedAcquisition]:
        enhanced = self.radar_engine.compute(acquisition)
        reduced = self.reducer.reduce_acquisition(enhanced, self.region, self.radar_engine.features)
        self._keep_rasters(enhanced)
        return reduced

    def process_collection(
        self,
        collection: Collection,
        process: Callable[[Acquisition], Optional[ReducedAcquisition]],
        name: str = "Processing"
    ) -> List[ReducedAcquisition]:
        """
        Run process() over every acquisition on a worker pool and join

        Acquisitions are independent; results come back in completion order
        and are sorted later by the assembler. Dropped or cancelled
        acquisitions are left out. An acquisition that cannot be processed
        (missing band, masking failure, value outside a conversion domain)
        is dropped with a warning; the others carry on.
        """
        def run(acquisition: Acquisition) -> Optional[ReducedAcquisition]:
            if self._cancel.is_set():
                return None
            try:
                return process(acquisition)
            except AcquisitionError as e:
                logger.warning(f"Dropping acquisition {acquisition.id}: {e.reason}")
            except ValueError as e:
                # DomainError and malformed rasters
                logger.warning(f"Dropping acquisition {acquisition.id}: {type(e).__name__}: {e}")
            return None

        tracker = ProgressTracker(len(collection), name)
        reduced: List[ReducedAcquisition] = []

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [executor.submit(run, acquisition) for acquisition in collection]
            for future in as_completed(futures):
                result = future.result()
                if result is not None:
                    reduced.append(result)
                tracker.update()

        tracker.finish()

        if self._cancel.is_set():
            logger.warning(f"{name} cancelled after {len(reduced)} acquisitions; discarding partial results")
            return []

        return reduced

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def run_optical(self) -> Dict[str, FeatureSeries]:
        """
        Stage: Sentinel-2 optical index series

        Returns:
            Feature name -> FeatureSeries (empty when no scene matched)
        """
        logger.info("\n" + "="*60)
        logger.info("STAGE: OPTICAL INDICES")
        logger.info("="*60)

        optical_cfg = self.config['optical']
        self._reset_rasters(self.optical_engine.indices)
        predicates = [cloud_cover_filter(optical_cfg['max_clouds'], optical_cfg['cloud_property'])]

        try:
            collection = self.acquisition_filter.apply(
                optical_cfg['product'], self.region, self.start, self.end, predicates
            )
        except EmptyCollectionError as e:
            logger.warning(f"Optical stage produced no data: {e}")
            self.results['optical'] = {'status': 'empty', 'acquisitions': 0}
            return {}

        reduced = self.process_collection(collection, self._process_optical, "Optical processing")
        if self.cancelled:
            self.results['optical'] = {'status': 'cancelled', 'acquisitions': len(collection)}
            return {}
        series = assemble_all(reduced, self.optical_engine.indices)

        self.results['optical'] = {
            'status': 'success',
            'acquisitions': len(collection),
            'processed': len(reduced),
            'dropped': len(collection) - len(reduced),
            'series_lengths': {k: len(v) for k, v in series.items()},
        }
        self.series.update(series)
        return series

    def run_radar(self) -> Dict[str, FeatureSeries]:
        """
        Stage: Sentinel-1 backscatter and polarimetric index series

        Returns:
            Feature name -> FeatureSeries (empty when no scene matched)
        """
        logger.info("\n" + "="*60)
        logger.info("STAGE: RADAR FEATURES")
        logger.info("="*60)

        radar_cfg = self.config['radar']
        self._reset_rasters(self.radar_engine.features)
        predicates = orbit_filters(
            radar_cfg['orbit_pass'],
            radar_cfg['max_relative_orbit'],
            radar_cfg['required_polarisations']
        )

        try:
            collection = self.acquisition_filter.apply(
                radar_cfg['product'], self.region, self.start, self.end, predicates
            )
        except EmptyCollectionError as e:
            logger.warning(f"Radar stage produced no data: {e}")
            self.results['radar'] = {'status': 'empty', 'acquisitions': 0}
            return {}

        reduced = self.process_collection(collection, self._process_radar, "Radar processing")
        if self.cancelled:
            self.results['radar'] = {'status': 'cancelled', 'acquisitions': len(collection)}
            return {}
        series = assemble_all(reduced, self.radar_engine.features)

        self.results['radar'] = {
            'status': 'success',
            'acquisitions': len(collection),
            'processed': len(reduced),
            'dropped': len(collection) - len(reduced),
            'series_lengths': {k: len(v) for k, v in series.items()},
        }
        self.series.update(series)
        return series

    def run_trends(self, series: Optional[Dict[str, FeatureSeries]] = None) -> Dict[str, Optional[TrendFit]]:
        """
        Stage: OLS trend per series over the analysis period

        Returns:
            Feature name -> TrendFit, or None when the series is too short
        """
        logger.info("\n" + "="*60)
        logger.info("STAGE: TREND ESTIMATION")
        logger.info("="*60)

        series = series if series is not None else self.series
        wanted: Sequence[str] = self.config['trend']['features'] or list(series)
        selected = {k: v for k, v in series.items() if k in wanted}

        trends = self.estimator.fit_all(selected, self.start, self.end)
        self.trends.update(trends)
        self.results['trends'] = {
            k: (v.to_dict() if v is not None else 'no trend available') for k, v in trends.items()
        }
        return trends

    def run_change_rasters(self) -> Dict[str, Optional[str]]:
        """
        Stage: per-pixel OLS change raster for each feature in trend.change_rasters

        Returns:
            Feature name -> GeoTIFF path, or None when too few acquisitions
            share one grid
        """
        logger.info("\n" + "="*60)
        logger.info("STAGE: PER-PIXEL CHANGE RASTERS")
        logger.info("="*60)

        paths: Dict[str, Optional[str]] = {}
        for feature in self.change_raster_features:
            stack = self._raster_stacks.get(feature, [])
            try:
                trend = fit_pixelwise(stack, feature, self.start, self.end, self.estimator.time_unit)
            except (InsufficientDataError, ValueError) as e:
                logger.warning(f"No change raster for {feature}: {e}")
                paths[feature] = None
                continue
            paths[feature] = save_change_raster(trend, self.output_dir / f'{feature}_change.tif')

        self.results['change_rasters'] = {
            k: (v if v is not None else 'no change raster available') for k, v in paths.items()
        }
        return paths

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def export_series(self) -> Optional[str]:
        """Write all assembled series to one CSV"""
        if not self.series:
            logger.warning("No series to export")
            return None

        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / 'feature_series.csv'
        series_to_frame(self.series).to_csv(path, index=False)
        logger.info(f"Series saved: {path}")
        return str(path)

    def generate_summary_report(self) -> str:
        """
        Generate final pipeline summary report

        Returns:
            Path to summary report
        """
        report = {
            'timestamp': datetime.now().isoformat(),
            'period': {'start': self.start.isoformat(), 'end': self.end.isoformat()},
            'region': self.region.to_geojson(),
            'stages': self.results
        }

        report_path = self.output_dir / f"trend_summary_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
        FileHandlers.safe_save_json(report, str(report_path))

        return str(report_path)

    def run_full_pipeline(self) -> bool:
        """
        Execute complete pipeline

        A cancelled run skips the remaining stages, still writes the summary
        report and returns False. The cancel flag is cleared on exit so the
        pipeline can be run again.

        Returns:
            True if successful
        """
        logger.info("\n" + "#"*60)
        logger.info("SENTINEL-1/2 TIME-SERIES TREND ANALYSIS")
        logger.info("#"*60)

        stages = [
            ('optical', self.config['optical']['enabled'], self.run_optical),
            ('radar', self.config['radar']['enabled'], self.run_radar),
        ]

        try:
            for name, enabled, run_stage in stages:
                if not enabled:
                    continue
                if self.cancelled:
                    self.results[name] = {'status': 'cancelled'}
                    continue
                run_stage()

            if self.cancelled:
                logger.warning("Pipeline cancelled; trends and outputs skipped")
                self.generate_summary_report()
                return False

            self.run_trends()
            if self.change_raster_features:
                self.run_change_rasters()

            self.export_series()
            self.generate_summary_report()

            logger.info("Pipeline execution completed")
            return True

        except SentinelTrendsError as e:
            logger.error(f"Pipeline execution failed: {e}")
            return False

        finally:
            self._cancel.clear()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point"""
    parser = argparse.ArgumentParser(
        description='Sentinel-1/2 time-series feature extraction and trend analysis'
    )
    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to configuration file'
    )
    parser.add_argument(
        '--stage',
        choices=['optical', 'radar', 'full'],
        default='full',
        help='Which stage to run'
    )
    parser.add_argument(
        '--output-dir',
        default=None,
        help='Override paths.output from the config'
    )

    args = parser.parse_args(argv)

    overrides = {'paths': {'output': args.output_dir}} if args.output_dir else None
    try:
        config = load_config(args.config, overrides)
    except SentinelTrendsError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    configure_logging(config['paths'].get('logs'))
    pipeline = TrendAnalysisPipeline(config=config)

    if args.stage == 'full':
        return 0 if pipeline.run_full_pipeline() else 1

    if args.stage == 'optical':
        pipeline.run_optical()
    else:
        pipeline.run_radar()

    pipeline.run_trends()
    if pipeline.change_raster_features:
        pipeline.run_change_rasters()
    pipeline.export_series()
    pipeline.generate_summary_report()
    return 0


if __name__ == "__main__":
    sys.exit(main())
