"""
Helper Utilities Module
Common functions for data validation, bounding boxes, file output and progress logging

Author: Research Team
License: MIT
"""

import numpy as np
import logging
from pathlib import Path
from typing import Tuple, Dict
import json
import threading
from datetime import datetime

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class DataValidator:
    """Validate data integrity and quality"""

    @staticmethod
    def check_data_range(data: np.ma.MaskedArray, expected_min: float, expected_max: float) -> bool:
        """
        Check if unmasked data falls within expected range

        Args:
            data: Input masked array
            expected_min: Minimum expected value
            expected_max: Maximum expected value

        Returns:
            True if data within range (or nothing to check)
        """
        if np.ma.count(data) == 0:
            return True

        data_min = float(np.ma.min(data))
        data_max = float(np.ma.max(data))

        if data_min < expected_min or data_max > expected_max:
            logger.warning(f"Data range [{data_min}, {data_max}] outside expected [{expected_min}, {expected_max}]")
            return False

        return True


class CoordinateTransforms:
    """Coordinate transformation utilities"""

    @staticmethod
    def bbox_to_polygon(bbox: Tuple[float, float, float, float]) -> Dict:
        """
        Convert bounding box to GeoJSON polygon

        Args:
            bbox: [S, W, N, E] format

        Returns:
            GeoJSON polygon dict
        """
        S, W, N, E = bbox

        if S >= N or W >= E:
            raise ValueError(f"Degenerate bbox [S, W, N, E] = {list(bbox)}")

        polygon = {
            'type': 'Polygon',
            'coordinates': [[
                [W, S],
                [E, S],
                [E, N],
                [W, N],
                [W, S]
            ]]
        }

        return polygon


class FileHandlers:
    """File I/O utilities"""

    @staticmethod
    def safe_save_json(data: Dict, filepath: str) -> bool:
        """
        Safely save dict as JSON

        Args:
            data: Dictionary to save
            filepath: Output path

        Returns:
            True if successful
        """
        try:
            Path(filepath).parent.mkdir(parents=True, exist_ok=True)
            with open(filepath, 'w') as f:
                json.dump(data, f, indent=2, default=str)
            logger.info(f"Saved: {filepath}")
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save {filepath}: {e}")
            return False


class ProgressTracker:
    """Track long-running process progress"""

    def __init__(self, total_steps: int, name: str = "Process"):
        """Initialize progress tracker"""
        self.total_steps = max(total_steps, 1)
        self.current_step = 0
        self.name = name
        self.start_time = datetime.now()
        self._lock = threading.Lock()

    def update(self, increment: int = 1) -> None:
        """Update progress"""
        with self._lock:
            self.current_step += increment
            current = self.current_step

        elapsed = (datetime.now() - self.start_time).total_seconds()
        rate = current / (elapsed + 1e-10)
        remaining = (self.total_steps - current) / (rate + 1e-10)

        pct = (current / self.total_steps) * 100

        logger.info(f"{self.name}: {pct:.1f}% ({current}/{self.total_steps}) "
                   f"ETA: {int(remaining)}s")

    def finish(self) -> None:
        """Mark as complete"""
        elapsed = (datetime.now() - self.start_time).total_seconds()
        logger.info(f"{self.name} completed in {elapsed:.1f}s")
