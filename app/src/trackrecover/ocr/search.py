"""Multi-scale, multi-rotation, tiled search for a decodable symbol rendering."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from itertools import islice
from typing import Iterator

from ..settings import settings
from . import preprocessing
from .models import NOT_FOUND, Decoded, DecodeOutcome, RasterImage, SearchCandidate
from .run_context import RunContext
from .symbol_decoder import SymbolDecoder, default_symbol_decoder

logger = logging.getLogger(__name__)

SWEEP_SCALES: tuple[float, ...] = (1, 1.5, 2, 3, 4)
TILE_SCALES: tuple[float, ...] = (1, 1.5, 2, 3)
TILE_GRIDS: tuple[int, ...] = (2, 3)
TILE_OVERLAP = 0.1

Rendering = tuple[SearchCandidate, RasterImage]


class _SearchBudget:
    """Candidate counter shared by the worker threads of one search."""

    def __init__(self, max_candidates: int | None, context: RunContext | None) -> None:
        self.max_candidates = max_candidates
        self.context = context
        self.used = 0
        self._lock = threading.Lock()

    def take(self) -> bool:
        if self.context is not None and self.context.should_stop():
            return False
        with self._lock:
            if self.max_candidates and self.used >= self.max_candidates:
                return False
            self.used += 1
            return True


class GeometricSearchEngine:
    """Finds any decodable rendering of an image, cheapest candidates first.

    Order: the image as-is, its preprocessed variants, then every
    scale x rotation of the whole image, then every tile of a 2x2 and a 3x3
    overlapping grid across a smaller scale range. The first successful
    decode wins. Candidate order depends only on the image dimensions, so
    identical inputs always traverse identical candidates.
    """

    def __init__(
        self,
        decoder: SymbolDecoder | None = None,
        *,
        max_candidates: int | None = None,
        max_pixels: int | None = None,
        workers: int | None = None,
    ) -> None:
        self.decoder = decoder or default_symbol_decoder()
        self.max_candidates = settings.search_max_candidates if max_candidates is None else max_candidates
        self.max_pixels = settings.search_max_pixels if max_pixels is None else max_pixels
        self.workers = max(1, settings.search_workers if workers is None else workers)

    def search(
        self,
        image: RasterImage,
        *,
        context: RunContext | None = None,
        trace: list[SearchCandidate] | None = None,
    ) -> DecodeOutcome:
        budget = _SearchBudget(self.max_candidates, context)

        outcome, tried = self._attempt(SearchCandidate(), image, budget)
        if trace is not None:
            trace.extend(tried)
        if isinstance(outcome, Decoded):
            return outcome

        renderings = self._renderings(image)
        if self.workers == 1:
            outcome = self._run_sequential(renderings, budget, trace)
        else:
            with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="symbol-search") as pool:
                outcome = self._run_batched(pool, renderings, budget, trace)

        if not isinstance(outcome, Decoded):
            logger.debug(
                "Search exhausted after %d candidates on %dx%d image",
                budget.used,
                image.width,
                image.height,
            )
        return outcome

    def _run_sequential(
        self,
        renderings: Iterator[Rendering],
        budget: _SearchBudget,
        trace: list[SearchCandidate] | None,
    ) -> DecodeOutcome:
        for candidate, rendered in renderings:
            outcome, tried = self._attempt(candidate, rendered, budget)
            if trace is not None:
                trace.extend(tried)
            if isinstance(outcome, Decoded):
                return outcome
            if not tried:
                break
        return NOT_FOUND

    def _run_batched(
        self,
        pool: ThreadPoolExecutor,
        renderings: Iterator[Rendering],
        budget: _SearchBudget,
        trace: list[SearchCandidate] | None,
    ) -> DecodeOutcome:
        # Batches run concurrently but are inspected in canonical order, so the
        # earliest successful candidate wins regardless of completion order.
        while True:
            batch = list(islice(renderings, self.workers))
            if not batch:
                return NOT_FOUND
            results = list(pool.map(lambda item: self._attempt(item[0], item[1], budget), batch))
            for outcome, tried in results:
                if trace is not None:
                    trace.extend(tried)
                if isinstance(outcome, Decoded):
                    return outcome
            if any(not tried for _outcome, tried in results):
                return NOT_FOUND

    def _attempt(
        self,
        candidate: SearchCandidate,
        image: RasterImage,
        budget: _SearchBudget,
    ) -> tuple[DecodeOutcome, list[SearchCandidate]]:
        tried: list[SearchCandidate] = []
        if not budget.take():
            return NOT_FOUND, tried
        tried.append(candidate)
        outcome = self.decoder.decode(image)
        if isinstance(outcome, Decoded):
            logger.debug("Decoded symbol at %s", candidate.describe())
            return outcome, tried

        for name, variant in preprocessing.preprocess_variants(image):
            if not budget.take():
                break
            tried.append(replace(candidate, variant=name))
            outcome = self.decoder.decode(variant)
            if isinstance(outcome, Decoded):
                logger.debug("Decoded symbol at %s", tried[-1].describe())
                return outcome, tried
        return NOT_FOUND, tried

    def _renderings(self, image: RasterImage) -> Iterator[Rendering]:
        for factor in SWEEP_SCALES:
            if not self._fits(image, factor):
                continue
            scaled = preprocessing.scale(image, factor)
            for angle in preprocessing.RIGHT_ANGLES:
                if factor == 1 and angle == 0:
                    continue  # identical to the direct attempt
                yield SearchCandidate(scale=factor, angle=angle), preprocessing.rotate(scaled, angle)

        for grid in TILE_GRIDS:
            for box in preprocessing.tile_boxes(image.width, image.height, grid, TILE_OVERLAP):
                tile = preprocessing.crop_tile(image, *box)
                for factor in TILE_SCALES:
                    if not self._fits(tile, factor):
                        continue
                    scaled = preprocessing.scale(tile, factor)
                    for angle in preprocessing.RIGHT_ANGLES:
                        candidate = SearchCandidate(scale=factor, angle=angle, tile=box, grid=grid)
                        yield candidate, preprocessing.rotate(scaled, angle)

    def _fits(self, image: RasterImage, factor: float) -> bool:
        if factor == 1 or not self.max_pixels:
            return True
        return image.width * image.height * factor * factor <= self.max_pixels
