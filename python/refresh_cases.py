#!/usr/bin/env python3
"""
Batch Refresh Script for the judicial consultation store

Force-refreshes a list of case numbers from the portal into the local
store. Case numbers come from the command line and/or a text file with
one case number per line (blank lines and lines starting with '#' are
ignored).

Usage:
    python refresh_cases.py 11001310300120230012300 05001400300220220045600
    python refresh_cases.py --file cases.txt [--config config.yaml]
"""

import sys
import argparse
import logging
from pathlib import Path
from typing import Iterable, List, Dict

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent))

from config_manager import get_config, configure_logging
from database.connection import DatabaseSettings, init_db, close_db
from database.consultation_service import (
    ConsultationService,
    ConsultationError,
    CaseNotFoundError,
    ClientContext,
)
from database.models import ConsultationType
from database.repositories import RepositoryError
from portal_client import PortalClient

logger = logging.getLogger(__name__)


def read_case_numbers(args_cases: Iterable[str], file_path: str = None) -> List[str]:
    """Collect case numbers, keeping first occurrence order."""
    cases = list(args_cases or [])
    if file_path:
        with open(file_path, 'r', encoding='utf-8') as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#'):
                    cases.append(line)

    seen = set()
    unique = []
    for case in cases:
        key = ''.join(case.split())
        if key and key not in seen:
            seen.add(key)
            unique.append(key)
    return unique


def refresh_all(service: ConsultationService, case_numbers: List[str]) -> Dict[str, int]:
    """
    Refresh every case, one at a time.

    Returns:
        Counts per outcome (synced, partial, degraded, not_found, failed)
    """
    summary = {'synced': 0, 'partial': 0, 'degraded': 0, 'not_found': 0, 'failed': 0}
    client = ClientContext(user_id=None, user_agent="refresh_cases")

    for index, case_number in enumerate(case_numbers, 1):
        logger.info(f"[{index}/{len(case_numbers)}] Refreshing {case_number}")
        try:
            view = service.consult(
                case_number,
                force_refresh=True,
                client=client,
                consultation_type=ConsultationType.REFRESH
            )
        except CaseNotFoundError:
            logger.warning(f"Case not found on portal: {case_number}")
            summary['not_found'] += 1
            continue
        except (ConsultationError, RepositoryError) as e:
            logger.error(f"Refresh failed for {case_number}: {e}")
            summary['failed'] += 1
            continue

        if view.degraded:
            summary['degraded'] += 1
        elif view.sync_failures:
            logger.warning(f"Partial sync for {case_number}: {', '.join(sorted(view.sync_failures))}")
            summary['partial'] += 1
        else:
            summary['synced'] += 1

    return summary


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Force-refresh judicial cases into the local store")
    parser.add_argument("cases", nargs="*", help="Case numbers to refresh")
    parser.add_argument("--file", "-f", help="File with one case number per line")
    parser.add_argument("--config", "-c", default=None, help="Path to config.yaml")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args(argv)

    config = get_config(args.config)
    configure_logging(config)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    case_numbers = read_case_numbers(args.cases, args.file)
    if not case_numbers:
        parser.error("no case numbers given")

    logger.info("=" * 50)
    logger.info(f"Refreshing {len(case_numbers)} case(s) from {config.portal.base_url}")
    logger.info("=" * 50)

    try:
        provider = init_db(DatabaseSettings.from_config(config.database))
        provider.create_tables()
        service = ConsultationService(provider, PortalClient(config.portal), search_config=config.search)

        summary = refresh_all(service, case_numbers)

        logger.info("=" * 50)
        logger.info("Refresh complete: " + ", ".join(f"{k}={v}" for k, v in summary.items()))
        logger.info("=" * 50)
    finally:
        close_db()

    return 1 if summary['failed'] else 0


if __name__ == "__main__":
    sys.exit(main())
