#!/usr/bin/env python3
"""Manual smoke run: analyze one sample business end to end and print the result."""

import asyncio
import logging
import sys

from acquisition_engine.config import Config
from acquisition_engine.models import BusinessRecord, DomainKind
from acquisition_engine.orchestrator import AnalysisDispatcher

logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL),
    format=Config.LOG_FORMAT
)

SAMPLE_BUSINESS = BusinessRecord(
    business_id="premier-multi-trade",
    business_name="Premier Multi-Trade Services",
    sector="Multi-Trade Services",
    location="Raleigh, NC",
    asking_price=2_800_000,
    annual_revenue=3_600_000,
    annual_net_profit=1_000_000,
)


async def run_sample() -> bool:
    """Run the sample analysis; providers without credentials fall back to formulas."""
    print(f"\n{'='*60}")
    print(f"Analyzing {SAMPLE_BUSINESS.business_name}")
    print(f"{'='*60}\n")

    Config.validate_config()

    def progress_callback(update):
        print(f"  [{update.get('stage')}] {update.get('business_id')}")

    dispatcher = AnalysisDispatcher(progress_callback=progress_callback)
    try:
        assessment = await dispatcher.analyze_record(SAMPLE_BUSINESS)
    except Exception as e:
        print(f"\n❌ Analysis failed with exception: {e}")
        return False

    print("\n" + "=" * 60)
    print("ASSESSMENT")
    print("=" * 60 + "\n")
    for kind in DomainKind:
        result = assessment.domain(kind)
        print(f"{kind.value.capitalize():10s} score={result.score:.3f} ({result.provenance.value})")
    print(f"\nComposite score: {assessment.composite_score:.3f}")
    print(f"Cap rate:        {assessment.cap_rate:.1%}")
    print(f"Payback years:   {assessment.payback_years:.1f}")
    print(f"Confidence:      {assessment.confidence.level} "
          f"({assessment.confidence.fallback_sourced} fallback domains)")
    print(f"Ownership model: {assessment.ownership_model}")
    print(f"\n{assessment.narrative.thesis}\n")
    print(f"{assessment.narrative.summary}\n")
    return True


def main():
    success = asyncio.run(run_sample())
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
