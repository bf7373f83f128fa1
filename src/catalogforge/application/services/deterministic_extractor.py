from __future__ import annotations

import logging

from catalogforge.core.errors import CatalogForgeError, ExtractorFailureError
from catalogforge.domain.models.extraction import ExtractionOptions, ExtractionOutcome
from catalogforge.domain.models.page import Page
from catalogforge.infrastructure.extractors.lines import layout_lines
from catalogforge.infrastructure.extractors.pattern_engine import PatternEngine
from catalogforge.infrastructure.extractors.pattern_registry import PatternRegistry
from catalogforge.infrastructure.extractors.price_anchored import PriceAnchoredExtractor

logger = logging.getLogger(__name__)


class DeterministicExtractor:
    """Rule-based extraction: registered column patterns, then price-anchored recovery."""

    def __init__(self, registry: PatternRegistry) -> None:
        self.registry = registry
        self.engine = PatternEngine(registry)
        self.recovery = PriceAnchoredExtractor()

    def extract(self, pages: list[Page] | tuple[Page, ...], options: ExtractionOptions | None = None) -> ExtractionOutcome:
        options = options or ExtractionOptions()
        try:
            return self._extract(pages, options)
        except CatalogForgeError:
            raise
        except Exception as exc:
            raise ExtractorFailureError(f"Deterministic extraction failed: {exc}") from exc

    def _extract(self, pages: list[Page] | tuple[Page, ...], options: ExtractionOptions) -> ExtractionOutcome:
        warnings: list[str] = []
        diagnostics: dict[str, object] = {
            "registry_patterns": self.registry.ids(),
            "registry_errors": list(self.registry.errors),
            "preferred_patterns": list(options.preferred_patterns),
            "force_price_anchored": options.force_price_anchored,
        }

        groups = []
        if not self.registry.patterns:
            warnings.append("pattern_registry_empty")
        else:
            matched = self.engine.match(
                layout_lines(pages),
                preferred_patterns=options.preferred_patterns,
                doc_id=options.doc_id,
            )
            groups = matched.groups
            warnings.extend(matched.warnings)
            diagnostics["pattern"] = matched.diagnostics

        if not groups or options.force_price_anchored:
            recovered = self.recovery.extract(
                pages,
                minimum_confidence=options.minimum_confidence,
                doc_id=options.doc_id,
            )
            diagnostics["price_anchored"] = recovered.diagnostics
            if options.force_price_anchored and recovered.groups:
                # Forced recovery replaces the pattern output entirely.
                groups = recovered.groups
            elif not groups:
                groups = recovered.groups
            warnings.extend(recovered.warnings)

        logger.debug(
            "Deterministic extraction over %s page(s): %s group(s), warnings=%s",
            len(pages),
            len(groups),
            warnings,
        )
        return ExtractionOutcome(groups=groups, warnings=warnings, diagnostics=diagnostics)
